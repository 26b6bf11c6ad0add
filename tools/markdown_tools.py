"""
Markdown Tools - Convert Outblog markdown into Shopify article HTML

This module provides:
1. Front-matter stripping
2. A small markdown subset to HTML converter (not a full markdown parser)
3. Slug and article handle derivation
4. Featured image validation
"""

import html as html_lib
import re
from typing import Optional
from urllib.parse import urlparse


# =============================================================================
# PATTERNS
# =============================================================================

FRONT_MATTER_PATTERN = re.compile(r'\A---\s.*?---\s*', re.DOTALL)

# Any of these characters means the content is treated as markdown
MARKDOWN_MARKERS = ('#', '*', '[')

HEADING_PATTERNS = [
    (re.compile(r'^#### (.*)$', re.MULTILINE), r'<h4>\1</h4>'),
    (re.compile(r'^### (.*)$', re.MULTILINE), r'<h3>\1</h3>'),
    (re.compile(r'^## (.*)$', re.MULTILINE), r'<h2>\1</h2>'),
    (re.compile(r'^# (.*)$', re.MULTILINE), r'<h1>\1</h1>'),
]

BOLD_PATTERN = re.compile(r'\*\*(.*?)\*\*')
ITALIC_PATTERN = re.compile(r'\*(.*?)\*')
LIST_ITEM_PATTERN = re.compile(r'^\* (.+)$', re.MULTILINE)
LIST_RUN_PATTERN = re.compile(r'(?:^<li>.*</li>(?:\n|$))+', re.MULTILINE)
IMAGE_PATTERN = re.compile(r'!\[([^\]]*)\]\(([^)]+)\)')
LINK_PATTERN = re.compile(r'\[([^\]]+)\]\(([^)]+)\)')
HORIZONTAL_RULE_PATTERN = re.compile(r'^---$', re.MULTILINE)
WRAPPED_LIST_PATTERN = re.compile(r'<p>(<ul>.*?</ul>)</p>', re.DOTALL)

# Shopify caps image alt text
MAX_ALT_TEXT_LENGTH = 125


# =============================================================================
# FRONT MATTER
# =============================================================================

def strip_front_matter(content: Optional[str]) -> str:
    """Remove a leading block delimited by --- lines, if present."""
    if not content:
        return ''
    return FRONT_MATTER_PATTERN.sub('', content, count=1)


def looks_like_markdown(content: str) -> bool:
    return any(marker in content for marker in MARKDOWN_MARKERS)


# =============================================================================
# MARKDOWN TO HTML
# =============================================================================

def _group_list_items(text: str) -> str:
    """Wrap each contiguous run of <li> lines in a single <ul>."""

    def wrap(match: re.Match) -> str:
        run = match.group(0)
        trailing = '\n' if run.endswith('\n') else ''
        items = ''.join(line for line in run.split('\n') if line)
        return f'<ul>{items}</ul>{trailing}'

    return LIST_RUN_PATTERN.sub(wrap, text)


def markdown_to_html(content: Optional[str], title: Optional[str] = None) -> str:
    """
    Convert Outblog markdown to HTML for a Shopify article body.

    Rule order matters: list items are converted before italics so a
    bullet's leading "*" is not read as an italic marker.

    Args:
        content: Markdown text, possibly with front-matter
        title: Post title, used as the body when content is empty

    Returns:
        Non-empty HTML string
    """
    html = strip_front_matter((content or "").replace("\r\n", "\n"))

    if not html.strip():
        return f'<p>{html_lib.escape(title or "Untitled")}</p>'

    if not looks_like_markdown(html):
        return html

    for pattern, replacement in HEADING_PATTERNS:
        html = pattern.sub(replacement, html)

    html = BOLD_PATTERN.sub(r'<strong>\1</strong>', html)

    html = LIST_ITEM_PATTERN.sub(r'<li>\1</li>', html)
    html = _group_list_items(html)

    html = ITALIC_PATTERN.sub(r'<em>\1</em>', html)

    # Images before links, otherwise ![alt](url) loses its "!"
    html = IMAGE_PATTERN.sub(r'<img src="\2" alt="\1" />', html)
    html = LINK_PATTERN.sub(
        r'<a href="\2" target="_blank" rel="noopener noreferrer">\1</a>', html
    )

    # Must run while rules are still on their own lines
    html = HORIZONTAL_RULE_PATTERN.sub('<hr>', html)

    html = html.replace('\n\n', '</p><p>')
    html = html.replace('\n', '<br>')

    html = WRAPPED_LIST_PATTERN.sub(r'\1', html)

    if not html.startswith('<'):
        html = f'<p>{html}</p>'

    return html


# =============================================================================
# SLUGS AND HANDLES
# =============================================================================

def derive_sync_slug(slug: Optional[str], title: Optional[str]) -> str:
    """
    Local slug for a synced post.

    Only whitespace is replaced, so punctuation survives:
    "Hello World!" -> "hello-world!"
    """
    if slug:
        return slug
    if title:
        return re.sub(r'\s+', '-', title.lower())
    return 'untitled'


def derive_article_handle(slug: Optional[str], title: Optional[str]) -> str:
    """
    Shopify article handle for a post.

    Non-alphanumeric runs collapse to one hyphen:
    "Hello World!" -> "hello-world"
    """
    if slug:
        return slug
    if title:
        handle = re.sub(r'[^a-z0-9]+', '-', title.lower()).strip('-')
        if handle:
            return handle
    return 'untitled'


# =============================================================================
# FEATURED IMAGE
# =============================================================================

def build_article_image(featured_image: Optional[str], title: Optional[str]) -> Optional[dict]:
    """
    Build the articleCreate image input.

    Anything that is not an absolute http(s) URL is dropped so the
    article is created without an image instead of failing.
    """
    if not featured_image:
        return None

    try:
        parsed = urlparse(featured_image)
    except ValueError:
        return None

    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return None

    return {
        "altText": (title or '')[:MAX_ALT_TEXT_LENGTH] or "Blog post image",
        "url": featured_image,
    }
