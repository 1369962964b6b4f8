import re
import logging
from typing import Dict, NamedTuple, Optional

logger = logging.getLogger(__name__)

LINK_OBJECT_ID_PATTERN = re.compile(r"^o:(\d+)$")
PERMALINK_PAGE_PATTERN = re.compile(r"/([^/]+)/(?:posts|videos)/")
PERMALINK_POST_PATTERN = re.compile(r"/(?:posts|videos)/([^/?]+)")
STORY_ID_PATTERN = re.compile(r"s:(\d+)|^(\d+)$")


class PermalinkIds(NamedTuple):
    page_id: str
    post_id: str


class PostReference(NamedTuple):
    page_id: str
    post_id: str
    page_source: str
    post_source: str


def _strip_quotes(value) -> str:
    if value is None:
        return ""
    text = str(value).replace("'", "").replace('"', "").strip()
    # Spreadsheet exports sometimes keep the leading "=" of ="123" formulas
    if text.startswith("="):
        text = text[1:].strip()
    return text


def parse_id_field(value) -> str:
    """
    Recover the exact digit string of an ID that a spreadsheet re-serialized in
    scientific notation.

    "1.04882E+14" becomes "104882000000000". The digits are shifted as text so
    no floating point precision is lost. Values without an exponent marker are
    returned trimmed and unquoted.

    Args:
        value: Raw cell value

    Returns:
        The cleaned ID string, or "" for empty input
    """
    cleaned = _strip_quotes(value)
    if not cleaned or ("e" not in cleaned and "E" not in cleaned):
        return cleaned

    parts = cleaned.lower().split("e")
    if len(parts) != 2:
        return cleaned
    base, exponent_text = parts

    try:
        exponent = int(exponent_text)
    except ValueError:
        return cleaned

    if base.startswith("+"):
        base = base[1:]
    base_digits = base.replace(".", "")
    if not base_digits.isdigit():
        return cleaned

    decimal_places = len(base.split(".", 1)[1]) if "." in base else 0
    zeros = exponent - decimal_places
    if zeros < 0:
        # Exponent does not cover the fractional digits, not an integer ID
        return cleaned

    return base_digits + "0" * zeros


def extract_page_id_from_link_object_id(value) -> str:
    """
    Return the page id from a Link Object ID of the form "o:<digits>".

    Anything else, including bare digits, returns "".
    """
    match = LINK_OBJECT_ID_PATTERN.match(_strip_quotes(value))
    return match.group(1) if match else ""


def extract_from_permalink(url) -> PermalinkIds:
    """
    Pull the page and post ids out of a Facebook post or video permalink.

    The page segment is accepted only when it is numeric, since vanity names
    cannot be used as a page id. The post segment is kept verbatim, so opaque
    "pfbid..." tokens survive.

    Args:
        url: Permalink such as https://www.facebook.com/<page>/posts/<post>

    Returns:
        PermalinkIds with "" for any part that could not be extracted
    """
    if not url:
        return PermalinkIds("", "")
    text = str(url).strip()

    page_id = ""
    page_match = PERMALINK_PAGE_PATTERN.search(text)
    if page_match and page_match.group(1).isdigit():
        page_id = page_match.group(1)

    post_id = ""
    post_match = PERMALINK_POST_PATTERN.search(text)
    if post_match:
        post_id = post_match.group(1)

    return PermalinkIds(page_id, post_id)


def extract_from_story_id(value) -> str:
    """Return the digits of a Story ID given as "s:<digits>" or bare digits."""
    match = STORY_ID_PATTERN.search(parse_id_field(value))
    if not match:
        return ""
    return match.group(1) or match.group(2) or ""


def strip_page_prefix(post_id: str, page_id: str) -> str:
    """Reduce a "<page>_<post>" compound id to the bare post id."""
    if post_id and page_id and post_id.startswith(f"{page_id}_"):
        return post_id[len(page_id) + 1 :]
    return post_id


def resolve_post_reference(
    row: Dict[str, str], fallback_page_id: Optional[str] = None
) -> PostReference:
    """
    Work out the page and post ids for a row.

    Page id: Link Object ID, then Permalink, then the fallback page.
    Post id: Permalink, then Story ID. The Story ID never supplies a page id.

    Args:
        row: Row with canonical column names
        fallback_page_id: Page configured for the account, if any

    Returns:
        PostReference including which column each id came from
    """
    page_id, page_source = "", ""
    post_id, post_source = "", ""

    link_page = extract_page_id_from_link_object_id(
        parse_id_field(row.get("Link Object ID"))
    )
    permalink = extract_from_permalink(row.get("Permalink"))

    if link_page:
        page_id, page_source = link_page, "Link Object ID"
    elif permalink.page_id:
        page_id, page_source = permalink.page_id, "Permalink"
    elif fallback_page_id:
        page_id, page_source = parse_id_field(fallback_page_id), "fallback"

    if permalink.post_id:
        post_id, post_source = permalink.post_id, "Permalink"
    else:
        story_post = extract_from_story_id(row.get("Story ID"))
        if story_post:
            post_id, post_source = story_post, "Story ID"

    stripped = strip_page_prefix(post_id, page_id)
    if stripped != post_id:
        logger.warning(
            f"Post id '{post_id}' includes page id prefix, using '{stripped}'"
        )
        post_id = stripped

    logger.debug(
        f"Resolved page_id='{page_id}' ({page_source or 'none'}), "
        f"post_id='{post_id}' ({post_source or 'none'})"
    )
    return PostReference(page_id, post_id, page_source, post_source)
