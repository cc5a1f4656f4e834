"""
Configuration management for the installer.

Contains the Pydantic settings that drive both the local setup and the remote
install flows, as well as the AWS backup instance commands.
"""
