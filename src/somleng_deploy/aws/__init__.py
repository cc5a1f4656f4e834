"""
AWS provisioning for the database backup instance.

Contains the client manager and the backup instance manager that renders a
declarative plan and applies it with boto3.
"""
