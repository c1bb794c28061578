"""Configuration module for dns-ttl-cache."""
import os
import logging

# --- Cache ---
DEFAULT_TTL = float(os.getenv('DNS_CACHE_TTL', 300))
REFRESH_POLICY = os.getenv('DNS_CACHE_REFRESH_POLICY', 'delete').lower()
REFRESH_DELAY = float(os.getenv('DNS_CACHE_REFRESH_DELAY', 0.01))

# --- Resolvers ---
DOH_UPSTREAM = os.getenv('DOH_UPSTREAM', 'https://cloudflare-dns.com/dns-query')
BOOTSTRAP_DNS = os.getenv('BOOTSTRAP_DNS', '8.8.8.8')
RESOLVER_TIMEOUT = float(os.getenv('RESOLVER_TIMEOUT', 5.0))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# --- Logging Setup ---
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger("dns-ttl-cache")
