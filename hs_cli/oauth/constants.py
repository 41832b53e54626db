"""Fixed HubSpot OAuth endpoints, callback settings and timings."""

HUBSPOT_AUTH_URL = "https://app.hubspot.com/oauth/authorize"
HUBSPOT_TOKEN_URL = "https://api.hubapi.com/oauth/v1/token"

# Local callback server (must match the redirect URI registered on the app)
CALLBACK_HOST = "127.0.0.1"
# Browsers may resolve localhost to either loopback family
CALLBACK_IPV6_HOST = "::1"
CALLBACK_PORT = 3847
CALLBACK_PATH = "/callback"
CALLBACK_URL = f"http://localhost:{CALLBACK_PORT}{CALLBACK_PATH}"

# Time the user has to complete authorization in the browser
CALLBACK_TIMEOUT = 120  # seconds

# Treat tokens as expired this long before their real expiry
REFRESH_BUFFER_MS = 5 * 60 * 1000

# Timeout for token endpoint requests
HTTP_TIMEOUT = 30.0  # seconds

DEFAULT_SCOPES = [
    "crm.objects.contacts.read",
    "crm.objects.contacts.write",
    "crm.objects.companies.read",
    "crm.objects.companies.write",
    "crm.objects.deals.read",
    "crm.objects.deals.write",
    "crm.objects.owners.read",
    "crm.schemas.contacts.read",
    "crm.schemas.contacts.write",
    "crm.schemas.companies.read",
    "crm.schemas.deals.read",
    "oauth",
    "tickets",
    "account-info.security.read",
]
