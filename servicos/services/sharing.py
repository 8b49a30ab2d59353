import re
import urllib.parse

from django.conf import settings
from django.core import signing
from django.urls import reverse

from .. import errors

SIGNING_SALT = "servicos.public-document"


def whatsapp_number(value):
    digits = re.sub(r"\D", "", value or "")
    if not digits:
        return ""
    if len(digits) in (10, 11) and not digits.startswith("55"):
        digits = f"55{digits}"
    return digits


def document_token(kind: str, pk) -> str:
    return signing.dumps({"kind": kind, "pk": pk}, salt=SIGNING_SALT)


def read_document_token(token: str, kind: str):
    try:
        data = signing.loads(token, salt=SIGNING_SALT, max_age=settings.SHARE_LINK_MAX_AGE)
    except signing.SignatureExpired:
        raise errors.NotFoundError("O link expirou.")
    except signing.BadSignature:
        raise errors.NotFoundError("Link inválido.")
    if data.get("kind") != kind:
        raise errors.NotFoundError("Link inválido.")
    return data["pk"]


def public_url(kind: str, pk) -> str:
    path = reverse("public_document", args=[kind, document_token(kind, pk)])
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}{path}"


def share_message(kind: str, pk, contact: str, title: str) -> dict:
    """URL pública e destinatário para envio por WhatsApp."""
    url = public_url(kind, pk)
    number = whatsapp_number(contact)
    text = f"{title}: {url}"
    return {
        "url": url,
        "recipient": number,
        "whatsapp_url": f"https://wa.me/{number}?text={urllib.parse.quote(text)}" if number else "",
    }
