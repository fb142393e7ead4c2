import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from .constants import TAX_FORM_REQUEST_EMAIL_TEMPLATE

logger = logging.getLogger(__name__)


def send_tax_form_request_email(to_email: str, *, document_link: str, recipient_name: str, account_name: str) -> int:
    """
    Send the "please sign your tax form" email. Delivery errors are not caught
    here: the caller records them on the legal document.
    """
    ctx = {
        "document_link": document_link,
        "recipient_name": recipient_name,
        "account_name": account_name,
    }
    template = f"emails/{TAX_FORM_REQUEST_EMAIL_TEMPLATE}"
    subject = render_to_string(f"{template}.subject.txt", ctx).strip()
    text_body = render_to_string(f"{template}.txt", ctx)
    html_body = render_to_string(f"{template}.html", ctx)

    msg = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
        to=[to_email],
    )
    msg.attach_alternative(html_body, "text/html")
    sent = msg.send(fail_silently=False)
    logger.info("Tax form: request email sent to %s for %s", to_email, account_name)
    return sent
