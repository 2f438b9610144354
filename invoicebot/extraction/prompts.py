"""Prompt templates for the four extraction stages.

Stage 1 and 2 see the first 2000 characters of the document, stages 3 and 4
the first 2500. Double quotes in the document are replaced with single
quotes so they cannot break the JSON examples embedded in the prompts.
"""

from invoicebot.extraction.schema import InvoiceRecord

EXTRACTION_BUDGET = 2000
VALIDATION_BUDGET = 2500

NOT_FOUND = "not found"

OUTPUT_KEYS = (
    '{"company_name":"","invoice_date":"","invoice_number":"",'
    '"net_amount":"","gross_amount":"","service_period":""}'
)


def prepare_source(text: str, budget: int) -> str:
    """Truncate document text to a character budget and neutralize double quotes."""
    return text[:budget].replace('"', "'")


def _or_not_found(value: str | None) -> str:
    return value if value is not None else NOT_FOUND


def build_extraction_prompt(text: str) -> str:
    """Stage 1: standard extraction.

    Args:
        text: Plain-text rendering of the document

    Returns:
        Prompt text
    """
    source = prepare_source(text, EXTRACTION_BUDGET)
    return f"""Extract invoice data into this strict JSON format:
{OUTPUT_KEYS}

IMPORTANT RULES:
- company_name: the VENDOR/SELLER who is BILLING, never the buyer
  * Look for "Von:", "From:", "Rechnungssteller:", the logo or the header
  * Never use the recipient ("An:", "To:", "Bill To:", "Rechnungsempfänger:")
- net_amount: the amount WITHOUT tax (Netto, Subtotal). Always extract it if available.
- gross_amount: the amount WITH tax (Brutto, Total). Same as net_amount if there is no tax.
- If only one amount exists, use it for BOTH net_amount and gross_amount
- Include the currency symbol (€, $, ...)
- Use null for missing fields
- Return ONLY JSON, no explanation

INVOICE TEXT:
{source}
"""


def build_retry_prompt(text: str) -> str:
    """Stage 2: detailed second attempt with field-by-field guidance."""
    source = prepare_source(text, EXTRACTION_BUDGET)
    return f"""SECOND ATTEMPT - extract the invoice data more carefully:
{OUTPUT_KEYS}

INSTRUCTIONS:
1. company_name: the BILLING company that sent the invoice, NOT the recipient
   - Look at the TOP of the invoice: header, logo area, "Von:", "Rechnungssteller:"
   - Avoid addresses introduced by "An:", "To:", "Rechnungsempfänger:"
2. invoice_number: "Invoice #", "Invoice Number:", "RE-", "Rechnungsnummer:"
3. invoice_date: the date the invoice was issued (not the due date)
4. net_amount: amount BEFORE tax ("Subtotal", "Net", "Netto", "Zwischensumme", "Summe netto")
   - MANDATORY, search the whole document
   - The amount before a tax line (19%, 7%) is the net amount
5. gross_amount: amount AFTER tax ("Total", "Amount Due", "Brutto", "Gesamtbetrag", "Endbetrag")
   - Equals net_amount when no tax is shown
6. service_period: the period the service was provided for, if mentioned

AMOUNT EXAMPLES:
- "Subtotal: 100€", "19% VAT: 19€", "Total: 119€" -> net_amount="100€", gross_amount="119€"
- Only "Total: 100€" without tax -> net_amount="100€", gross_amount="100€"
- Never leave net_amount null if ANY amount is present

INVOICE TEXT:
{source}
"""


def build_recalculation_prompt(
    text: str, current_net: str | None, current_gross: str | None
) -> str:
    """Stage 3: recompute totals line by line, supporting mixed tax rates.

    Args:
        text: Plain-text rendering of the document
        current_net: Net amount extracted so far
        current_gross: Gross amount extracted so far

    Returns:
        Prompt text
    """
    source = prepare_source(text, VALIDATION_BUDGET)
    return f"""VALIDATION & RECALCULATION TASK

CURRENTLY EXTRACTED (possibly incorrect):
- Net Amount: {_or_not_found(current_net)}
- Gross Amount: {_or_not_found(current_gross)}

STEP 1: Find ALL line items/positions in the invoice table.
STEP 2: Read each position's tax rate ("MwSt", "USt.", "VAT %").
        Invoices can mix rates (7% and 19% on the same invoice): group positions by rate.
STEP 3: For each rate group, sum the nets and compute gross = group_net x (1 + rate).
STEP 4: Total Net = sum of group nets; Total Gross = sum of group grosses
        (NOT total net x one rate).

EXAMPLE:
- Position A: net 37,96€, 7% -> gross 40,62€
- Position B: net 132,02€, 19% -> gross 157,04€
- Total net 169,98€, total gross 197,66€ (169,98 x 1.19 = 202,28€ would be WRONG)

RESPOND WITH THIS JSON:
{{
  "positions_found": [
    {{"net": "37,96€", "tax_rate": "7%", "gross_calculated": "40,62€"}},
    {{"net": "132,02€", "tax_rate": "19%", "gross_calculated": "157,04€"}}
  ],
  "recalculated_net": "sum of all position nets",
  "recalculated_gross": "sum of all position grosses",
  "has_mixed_tax_rates": true/false,
  "calculation_matches": true/false,
  "confidence": "high/medium/low"
}}

RULES:
- Never assume a single tax rate; check every position
- calculation_matches = true if your totals match the extracted ones (±1.00 tolerance)
- confidence = "high" only if a clear table with a tax rate column exists
- confidence = "low" if there is no clear table or no visible tax rates

INVOICE TEXT:
{source}
"""


def build_quality_check_prompt(text: str, record: InvoiceRecord) -> str:
    """Stage 4: critical self-check of the currently held values."""
    source = prepare_source(text, VALIDATION_BUDGET)
    return f"""QUALITY CHECK TASK - critical review

The following data was extracted from an invoice. Check CRITICALLY whether it is CORRECT.

EXTRACTED DATA:
- Company Name: {_or_not_found(record.vendor_name)}
- Invoice Number: {_or_not_found(record.invoice_number)}
- Invoice Date: {_or_not_found(record.invoice_date)}
- Net Amount: {_or_not_found(record.net_amount)}
- Gross Amount: {_or_not_found(record.gross_amount)}
- Service Period: {_or_not_found(record.service_period)}

CHECK EACH FIELD:
1. Is the company the SENDER who bills, not the recipient?
2. Does the invoice number match exactly (no typos, no other number)?
3. Is the invoice date the issue date, not a due date or service date?
4. Is net the amount before tax and gross the total to pay?
5. Is the service period correct, if mentioned?

RESPOND WITH JSON:
{{
  "all_correct": true/false,
  "issues_found": [
    {{"field": "company_name", "issue": "description", "should_be": "correct value"}}
  ],
  "confidence": "high/medium/low",
  "recommendation": "keep_extracted_data" or "use_corrections"
}}

RULES:
- all_correct = true ONLY if you are sure everything is right
- List anything suspicious in issues_found
- confidence = "high" only if the text clearly shows the values
- recommendation = "use_corrections" only if you are confident your corrections are right

INVOICE TEXT:
{source}
"""
