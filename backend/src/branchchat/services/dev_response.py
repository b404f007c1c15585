"""Canned assistant reply for local development.

Enabled with ``USE_DEV_ASSISTANT_RESPONSE=true``. No provider is called, so
retry and fallback are never exercised.
"""

DEV_ASSISTANT_TEXT = """## White wine picks

Choose by taste. Five reliable styles:

1. Sauvignon Blanc
- Regions: New Zealand, Loire Valley
- Crisp acidity with citrus and tropical fruit. Good with fish and salads.
2. Chardonnay
- Regions: Burgundy, California
- Rich and creamy, butter and vanilla when oak-aged. Good with chicken and cream sauces.
3. Riesling
- Regions: Germany, Australia
- Dry to sweet, honey and peach aromas. Dry styles suit Asian dishes.
4. Pinot Grigio
- Regions: Italy, United States
- Light and easy, pear and apple notes. Good with starters.
5. Grenache Blanc
- Regions: Rhone Valley
- Ripe fruit with herbal notes. Good with fish and vegetables.

Pick one that fits the dish and the occasion."""

DEV_CHUNK_SIZE = 32


def dev_response_chunks(text: str = DEV_ASSISTANT_TEXT, size: int = DEV_CHUNK_SIZE) -> list[str]:
    """Split the canned reply into fixed-size stream chunks."""
    return [text[index : index + size] for index in range(0, len(text), size)]
