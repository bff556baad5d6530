"""
Miranda: a tiny wiki served by FastAPI.

Pages live in Postgres; each page title becomes a URL alias at startup.
Visitors log on with either a local username/password or an OpenID Connect
provider, chosen once per deployment.
"""
