from decimal import Decimal

# Cumulative yearly payouts (USD) above which a US tax form is required (IRS 1099-NEC)
US_TAX_FORM_THRESHOLD = Decimal("600")

# PayPal payouts are reported by PayPal itself (1099-K), so they use that form's cutoff
US_TAX_FORM_THRESHOLD_FOR_PAYPAL = Decimal("20000")

# HelloWorks limits participant names to 64 characters
PARTICIPANT_NAME_MAX_LENGTH = 64
PARTICIPANT_NAME_PART_MAX_LENGTH = 30

# Participant key declared in the HelloWorks workflow
HELLOWORKS_PARTICIPANT_ID = "participant_swVuvW"

TAX_FORM_REQUEST_EMAIL_TEMPLATE = "tax-form-request"
