TEST_REGION = "us-east-1"
TEST_DOMAIN = "sip.example.org"
TEST_PUBLIC_IP = "203.0.113.5"
TEST_CLUSTER_IDENTIFIER = "somleng-db"
TEST_DATABASE_NAME = "somleng_production"
TEST_PASSWORD_PARAMETER = "/somleng/db/password"

ENV_TEMPLATE = """\
# Somleng production configuration
DOMAIN=somleng.example.com
FS_EXTERNAL_SIP_IP=
FS_EXTERNAL_RTP_IP=

# Secrets (generated on first run)
POSTGRES_PASSWORD=
SECRET_KEY_BASE=
ANYCABLE_SECRET=
RATING_ENGINE_PASSWORD=

RAILS_ENV=production
"""

CONFIGURED_ENV = f"""\
DOMAIN={TEST_DOMAIN}
FS_EXTERNAL_SIP_IP={TEST_PUBLIC_IP}
FS_EXTERNAL_RTP_IP={TEST_PUBLIC_IP}
POSTGRES_PASSWORD=secret
"""

BOOTSTRAP_OUTPUT = """\
Seeding database...
account_sid: AC123
auth_token: tok456
phone_number: 1294
Done
"""
