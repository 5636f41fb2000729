"""
Identity Resolution

Turns raw contact data into a fingerprint that is identical for every
spelling of the same person:

- Email: lowercase, trim, Gmail dot-blindness (j.doe@gmail.com == jdoe@gmail.com)
- Phone: digits only, US country code dropped from 11-digit numbers
- Domain: explicit company domain, else the email's domain

hash_key = SHA256(email | domain | phone), 64 lowercase hex characters.

None of these functions raise on bad input. Upload data is messy and a
hash must still be computable for every row.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

GMAIL_DOMAINS = frozenset({"gmail.com", "googlemail.com"})
HASH_SEPARATOR = "|"

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class RawContactRecord:
    """Untrusted contact input from an upload, pixel capture or data pull."""
    email: Optional[str]
    company_domain: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    job_title: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class CanonicalIdentity:
    email: str
    domain: str
    phone: str

    def hash_input(self) -> str:
        return HASH_SEPARATOR.join((self.email, self.domain, self.phone))


def normalize_email(email: Optional[str]) -> str:
    """
    Normalize email for hashing.

    Examples:
        John.Doe@Company.com  -> john.doe@company.com
        j.o.h.n.doe@gmail.com -> johndoe@gmail.com
        notanemail            -> notanemail
    """
    if not email:
        return ""

    cleaned = email.strip().lower()
    local, at, domain = cleaned.partition("@")
    if not at or not local or not domain:
        return cleaned

    if domain in GMAIL_DOMAINS:
        local = local.replace(".", "")
        # "...@gmail.com" has nothing left to identify
        if not local:
            return cleaned

    return f"{local}@{domain}"


def extract_domain_from_email(email: Optional[str]) -> str:
    """Return the lowercased part after '@', or '' if there is none."""
    if not email:
        return ""
    _, at, domain = email.strip().lower().partition("@")
    return domain if at else ""


def normalize_phone(phone: Optional[str]) -> str:
    """
    Normalize phone for hashing.

    Examples:
        +1-555-123-4567 -> 5551234567
        (555) 123-4567  -> 5551234567
    """
    if not phone:
        return ""

    digits = _NON_DIGITS.sub("", str(phone))

    # US number with leading country code
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]

    return digits


def resolve_domain(email: Optional[str], company_domain: Optional[str]) -> str:
    domain = (company_domain or "").strip().lower()
    return domain or extract_domain_from_email(email)


def canonicalize(
    email: Optional[str],
    company_domain: Optional[str] = None,
    phone: Optional[str] = None,
) -> CanonicalIdentity:
    return CanonicalIdentity(
        email=normalize_email(email),
        domain=resolve_domain(email, company_domain),
        phone=normalize_phone(phone),
    )


def calculate_hash_key(
    email: Optional[str],
    company_domain: Optional[str] = None,
    phone: Optional[str] = None,
) -> str:
    """SHA-256 fingerprint of the canonical (email, domain, phone) triple."""
    identity = canonicalize(email, company_domain, phone)
    return hashlib.sha256(identity.hash_input().encode("utf-8")).hexdigest()


def hash_record(record: RawContactRecord) -> str:
    return calculate_hash_key(record.email, record.company_domain, record.phone)
