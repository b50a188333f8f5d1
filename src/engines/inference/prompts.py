"""
Prompt templates for the two inference calls.
"""

import json
from typing import Any, Dict, List

IMAGE_ANALYSIS_PROMPT = """You are a food analysis assistant. Look at the meal in the photo and identify its ingredients.

Respond with JSON only, in exactly this shape:
{
  "mealSummary": "short description of the meal, at most 200 characters",
  "ingredients": [
    {"name": "ingredient name", "isOrganic": false}
  ]
}

Rules:
- List each distinct ingredient once, using a common lowercase name.
- Include visible sauces, oils and seasonings when they can be identified.
- Set isOrganic to true only when the photo clearly shows organic labelling.
- If the photo does not show food, return an empty ingredients list."""

MULTI_IMAGE_NOTE = (
    "\n\nNote: Multiple images provided. Please analyze all images together "
    "as they represent the same meal from different angles."
)

INGREDIENT_ZONING_PROMPT = """You classify food ingredients for an elimination diet using a traffic-light system.

Zones:
- green: generally well tolerated, whole and minimally processed foods
- yellow: moderate, tolerated by some people or in small amounts
- red: common triggers, heavily processed foods, added sugars, alcohol

For every input ingredient return its zone, a category (for example "vegetable", "grain", "dairy", "protein") and a food group.

Respond with JSON only, in exactly this shape:
{
  "ingredients": [
    {"name": "ingredient name as given", "zone": "green", "category": "vegetable", "group": "leafy greens"}
  ]
}"""


def image_analysis_messages(image_urls: List[str]) -> List[Dict[str, Any]]:
    """One user message with the prompt followed by every image."""
    text = IMAGE_ANALYSIS_PROMPT + (MULTI_IMAGE_NOTE if len(image_urls) > 1 else "")
    content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
    content.extend({"type": "image_url", "image_url": {"url": url}} for url in image_urls)
    return [{"role": "user", "content": content}]


def ingredient_zoning_messages(names: List[str]) -> List[Dict[str, Any]]:
    return [{"role": "user", "content": f"{INGREDIENT_ZONING_PROMPT}\n\nInput: {json.dumps(names)}"}]
