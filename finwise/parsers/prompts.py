"""Prompt templates for the two-step text pipeline and the vision extractor."""

EXTRACTION_PROMPT = """You isolate transaction details from bank emails and SMS.

Return ONLY the one or two sentences that describe the actual transaction:
amount, date/time, card or account reference, merchant or counterparty,
reference number and UPI details if present.

Leave out greetings, disclaimers, contact details, footers, marketing text,
and balance or credit-limit summaries. Keep the sentences exactly as written.

Example input:
Subject: Transaction alert for your ICICI Bank Credit Card
Dear Customer,
Your ICICI Bank Credit Card XX9006 has been used for a transaction of INR 15.00 on Nov 16, 2025 at 10:07:13. Info: UPI-532029754318-PARAS SI.
The available credit limit on your card is Rs. 50,000.00.

Example output:
Your ICICI Bank Credit Card XX9006 has been used for a transaction of INR 15.00 on Nov 16, 2025 at 10:07:13. Info: UPI-532029754318-PARAS SI.

CONTENT:
{content}

Return just the transaction text (no JSON, no markdown):"""


STRUCTURING_PROMPT = """You are a bank transaction parser. Convert the text into JSON.

TRANSACTION TYPE - judge from the account holder's side only:
- "debit": money left the holder's account or card (debited from your account,
  spent using your card, paid via UPI, withdrawn, transferred to someone).
- "credit": money entered the holder's account (credited to your account,
  received from someone, refund or salary or cashback credited).
Ignore where the money went. "debited from Card XX2008 and credited to Amazon"
is a debit. "debited from John's account and credited to your account" is a credit.

ACCOUNT - in this order:
1. An explicit card/account suffix ("Card XX2008", "A/C XX1234", "Account **5678")
   gives its last 4 digits. This wins even when UPI details are also present.
2. Otherwise, a UPI-only transaction (UPI Ref, VPA like name@ybl) gives "{upi_marker}".
3. Otherwise null.

MERCHANT - for "Info: UPI-532029754318-PARAS SI" the merchant is "PARAS SI" and
the transaction_id is "532029754318".

Ignore available balance and credit-limit figures; only the transaction amount counts.

Return this JSON and nothing else:
{{
  "transaction_id": "reference/UPI/UTR number or null",
  "amount": 1400.00,
  "merchant": "merchant or counterparty name",
  "type": "debit or credit",
  "category": "one of: {categories}",
  "date": "YYYY-MM-DD or null",
  "currency": "ISO code, or null if not stated ({base_currency} is assumed)",
  "account_last_digits": "4 digits, {upi_marker}, or null",
  "confidence": 0.0 to 1.0
}}

Examples:
Text: "Rs 1,400.00 spent using ICICI Bank Card XX2008 on 25-Sep-25 at ZOMATO."
{{"transaction_id": null, "amount": 1400.00, "merchant": "ZOMATO", "type": "debit", "category": "Food & Dining", "date": "2025-09-25", "currency": "INR", "account_last_digits": "2008", "confidence": 0.95}}

Text: "Rs 5,000.00 credited to your A/C XX1234 from Employer on 01-Jan-25. Salary payment."
{{"transaction_id": null, "amount": 5000.00, "merchant": "Employer", "type": "credit", "category": "Income", "date": "2025-01-01", "currency": "INR", "account_last_digits": "1234", "confidence": 0.95}}

Text: "Rs 850 paid via UPI to merchant@paytm. UPI Ref: 12345678901. Date: 15-Mar-25."
{{"transaction_id": "12345678901", "amount": 850.00, "merchant": "merchant@paytm", "type": "debit", "category": "Other", "date": "2025-03-15", "currency": "INR", "account_last_digits": "{upi_marker}", "confidence": 0.9}}

Text: "USD 25.00 spent on your Card XX4321 at NETFLIX.COM on 03-Feb-25."
{{"transaction_id": null, "amount": 25.00, "merchant": "NETFLIX.COM", "type": "debit", "category": "Entertainment", "date": "2025-02-03", "currency": "USD", "account_last_digits": "4321", "confidence": 0.9}}

TEXT:
{text}

JSON:"""


VISION_PROMPT = """This image is page {page_number} of a bank or credit card statement.

List every transaction row on the page. Skip opening/closing balances, totals,
reward summaries and headers.

Return JSON in this shape:
{{
  "transactions": [
    {{
      "date": "YYYY-MM-DD",
      "description": "merchant or narration as printed",
      "amount": 1234.50,
      "type": "debit or credit",
      "category": "one of: {categories}",
      "currency": "ISO code, {base_currency} if not shown",
      "confidence": 0.0 to 1.0
    }}
  ]
}}

Amounts are positive numbers without thousands separators. Rows marked CR,
refunds and payments received are "credit"; everything else is "debit".
Return {{"transactions": []}} if the page has no transactions."""


def build_extraction_prompt(content: str) -> str:
    return EXTRACTION_PROMPT.format(content=content)


def build_structuring_prompt(text: str, categories: list[str], upi_marker: str, base_currency: str) -> str:
    return STRUCTURING_PROMPT.format(
        text=text, categories=", ".join(categories), upi_marker=upi_marker, base_currency=base_currency
    )


def build_vision_prompt(page_number: int, categories: list[str], base_currency: str) -> str:
    return VISION_PROMPT.format(
        page_number=page_number, categories=", ".join(categories), base_currency=base_currency
    )
