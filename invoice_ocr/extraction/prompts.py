"""Prompts for Polish invoice (Faktura VAT) extraction."""

SYSTEM_PROMPT = """You are an expert at extracting structured data from Polish invoices (Faktura VAT).

Your task is to extract key information from OCR text and return it in valid JSON format.

IMPORTANT RULES:
1. Extract only information that is clearly present in the OCR text
2. For missing fields, use null
3. Polish currency is PLN unless stated otherwise
4. NIP (tax ID) is always 10 digits
5. Dates should be in YYYY-MM-DD format
6. Amounts must be numeric (no currency symbols)
7. VAT rates in Poland: 23%, 8%, 5%, 0%

COMMON POLISH TERMS:
- "Sprzedawca" = Seller
- "Nabywca" = Buyer
- "Data wystawienia" = Issue date
- "Termin płatności" = Due date
- "Wartość netto" = Net amount
- "VAT" = VAT amount
- "Wartość brutto" = Gross amount
- "Razem" / "Do zapłaty" = Total to pay"""

RESPONSE_STRUCTURE = """{
  "extracted_data": {
    "invoice_number": "string",
    "issue_date": "YYYY-MM-DD",
    "due_date": "YYYY-MM-DD or null",
    "seller": {"name": "string", "nip": "1234567890", "address": "string or null"},
    "buyer": {"name": "string", "nip": "1234567890", "address": "string or null"},
    "currency": "PLN",
    "net_amount": number,
    "vat_amount": number,
    "gross_amount": number,
    "line_items": [
      {"description": "string", "quantity": number, "unit_price": number,
       "vat_rate": 23, "net": number, "vat": number, "gross": number}
    ],
    "invoice_type": "SALE"
  },
  "confidence": {
    "invoice_number": 95, "issue_date": 90, "due_date": 85,
    "seller_name": 92, "seller_nip": 98, "buyer_name": 88, "buyer_nip": 97,
    "net_amount": 96, "vat_amount": 94, "gross_amount": 97, "line_items": 89
  }
}"""


def build_extraction_prompt(ocr_text: str) -> str:
    """Build the user prompt asking for the fixed JSON structure.

    Args:
        ocr_text: Raw OCR text

    Returns:
        Formatted prompt string
    """
    return f"""Extract invoice data from this Polish invoice OCR text.

Return ONLY valid JSON matching this exact structure:

{RESPONSE_STRUCTURE}

Confidence scores (0-100) indicate how certain you are about each extracted field.

OCR Text:
{ocr_text}"""
