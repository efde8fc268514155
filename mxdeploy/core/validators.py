"""Input validators used by the configuration wizard and settings model."""
import re

from mxdeploy.core.errors import ValidationError

# Dot separated labels, no leading/trailing hyphen, alphabetic TLD
DOMAIN_RE = re.compile(
    r"(?=.{4,253}\Z)"
    r"(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+"
    r"[A-Za-z]{2,63}"
)
EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
# Shape only: octet ranges are not checked
IPV4_SHAPE_RE = re.compile(r"[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}")


def validate_domain(domain: str) -> bool:
    return bool(domain) and DOMAIN_RE.fullmatch(domain) is not None


def validate_email(email: str) -> bool:
    return bool(email) and EMAIL_RE.fullmatch(email) is not None


def validate_ipv4_shape(address: str) -> bool:
    return bool(address) and IPV4_SHAPE_RE.fullmatch(address) is not None


def validate_port(port) -> bool:
    try:
        value = int(port)
    except (TypeError, ValueError):
        return False
    return 1 <= value <= 65535


def require_domain(domain: str, field: str = "domain") -> str:
    if not validate_domain(domain):
        raise ValidationError(f"Invalid {field}: {domain!r}", hint="Example: chat.example.com")
    return domain


def require_email(email: str, field: str = "email") -> str:
    if not validate_email(email):
        raise ValidationError(f"Invalid {field}: {email!r}", hint="Example: admin@example.com")
    return email


def require_ipv4_shape(address: str, field: str = "IP address") -> str:
    if not validate_ipv4_shape(address):
        raise ValidationError(f"Invalid {field}: {address!r}", hint="Example: 203.0.113.10")
    return address


def require_port(port, field: str = "port") -> int:
    if not validate_port(port):
        raise ValidationError(f"Invalid {field}: {port!r}", hint="Use a number between 1 and 65535")
    return int(port)
