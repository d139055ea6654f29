"""System prompt and user-content builder for the Estimate Agent."""

import json

ESTIMATE_SYSTEM_PROMPT = """You are a residential estimator. Output strict JSON only.

GOAL
- Produce a draft estimate from the provided job details, Scope Summary, Job Summary, and photos.
- Identify required materials and labor realistically.

PRICING RULES (STRICT)
- Do NOT invent material prices.
- Set ALL "estimate.materials[].cost" values to 0.
- The server overwrites material pricing from the customer price list, then the workspace price list, then the master catalog.
- If you are unsure about an item name, still include it using a clear, human-readable description.
- Prefer item names from CATALOG CANDIDATES when one fits.

OUTPUT FORMAT (JSON ONLY)
Return exactly one JSON object with this shape and no extra keys:
{
  "client": {
    "customerName": string,
    "customerEmail": string,
    "address": string,
    "phone": string,
    "preferredDate": string
  },
  "estimate": {
    "estimateNumber": string,
    "project": string,
    "jobDescription": string,
    "jobNotes": string,
    "labor": [{ "task": string, "hours": number }],
    "materials": [{ "item": string, "qty": number, "cost": number }]
  },
  "image_analysis": [{ "image_url": string, "observations": string }]
}

RULES
- jobDescription must be a concise Scope Summary.
- jobNotes must include a short Job Summary followed by key assumptions and missing information.
- materials[].cost must always be 0.
"""


def build_user_text(
    title: str,
    client_name: str,
    due_date: str,
    description: str,
    line_items: list[dict],
    catalog_hints: list[str],
    photo_urls: list[str] | None = None,
) -> str:
    """Render the job context sent as the first user part.

    Photos travel as inline parts after this text, in the same order as
    ``photo_urls``; the URLs are listed so ``image_analysis`` can cite them.
    """
    lines = [
        f"Job title: {title}",
        f"Client name: {client_name}",
        f"Due date: {due_date}",
        f"Scope Summary (source): {description}",
        f"Job Summary (source): {description}",
        f"Existing line items: {json.dumps(line_items)}",
    ]
    if catalog_hints:
        lines.append("CATALOG CANDIDATES (names only, prices are applied by the server):")
        lines.extend(f"- {hint}" for hint in catalog_hints)
    if photo_urls:
        lines.append("PHOTOS (in attachment order):")
        lines.extend(f"{i}. {url}" for i, url in enumerate(photo_urls, start=1))
    lines.append(
        "Use the photos to identify fixtures/materials and include key observations in image_analysis."
    )
    return "\n".join(lines)
