"""
Scraping of the party website: news list, team updates and the events page.

The pages have no feeds, so list entries are recognized by the date and
category text that surrounds each link. Every parser returns RawEntry records
on the WEBSITE platform; the normalizer treats them like any other entry.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

from party_feed.ingestion.http_client import FeedFetcher, FetchError, FetchKind, FetchTarget
from party_feed.ingestion.schemas import NATIONWIDE_PREFECTURE, NormalizedPost, Platform, PostDomain, RawEntry

logger = logging.getLogger(__name__)

JST = timezone(timedelta(hours=9))

NEWS_CATEGORY_MAP = {
    "党務": "party_hq",
    "政策": "policy",
    "国会": "parliament",
    "選挙": "election",
    "党宣言": "party_declaration",
    "お知らせ": "announcement",
    "国民民主プレス": "national_democratic_press_outer",
    "その他": "other",
}
DEFAULT_NEWS_CATEGORY = "party_hq"
TEAM_CATEGORY = "announcement"

EXCLUDED_NEWS_PATHS = frozenset({
    "/",
    "/news",
    "/news/business/kokuminseiji_dai3",
    "/news/policy/20240328_1",
    "/news/policy/20240926_1",
})
EXCLUDED_NEWS_TITLES = (
    "ニュースリリース",
    "トップ > ニュースリリース",
    "こくみん政治塾",
    "中小企業・非正規賃上げ応援10策",
    "医療制度改革",
)

PREFECTURE_CODES_BY_NAME = {
    "北海道": "01", "青森": "02", "岩手": "03", "宮城": "04", "秋田": "05",
    "山形": "06", "福島": "07", "茨城": "08", "栃木": "09", "群馬": "10",
    "埼玉": "11", "千葉": "12", "東京": "13", "神奈川": "14", "新潟": "15",
    "富山": "16", "石川": "17", "福井": "18", "山梨": "19", "長野": "20",
    "岐阜": "21", "静岡": "22", "愛知": "23", "三重": "24", "滋賀": "25",
    "京都": "26", "大阪": "27", "兵庫": "28", "奈良": "29", "和歌山": "30",
    "鳥取": "31", "島根": "32", "岡山": "33", "広島": "34", "山口": "35",
    "徳島": "36", "香川": "37", "愛媛": "38", "高知": "39", "福岡": "40",
    "佐賀": "41", "長崎": "42", "熊本": "43", "大分": "44", "宮崎": "45",
    "鹿児島": "46", "沖縄": "47",
}

# First matching rule wins
EVENT_TYPE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("candidate_recruitment", ("候補者募集",)),
    ("street_campaign_support", ("街頭", "集会", "rally")),
    ("party_hq_regular_posting", ("定例ポスティング",)),
    ("poster_posting", ("ポスティング",)),
    ("poster_display", ("ポスター",)),
    ("indoor_work", ("室内",)),
    ("citizen_campus", ("キャンパス",)),
    ("town_meeting", ("タウンミーティング", "会議", "懇談")),
    ("off_meeting", ("オフ会",)),
    ("indoor_event_support", ("ボランティア", "volunteer")),
)
DEFAULT_EVENT_TYPE = "other"

RECENT_EVENTS_HEADING = "最近追加された情報"
MAX_DESCRIPTION_LENGTH = 100
MAX_TITLE_LENGTH = 200

_NEWS_LINE = re.compile(r"(\d{4}\.\d{1,2}\.\d{1,2})\s+(\S+)\s*(.+)")
_FULL_DATE = re.compile(r"(\d{4})\s*[.年/\-]\s*(\d{1,2})\s*[.月/\-]\s*(\d{1,2})")
_MONTH_DAY = re.compile(r"(\d{1,2})月(\d{1,2})日")
_EVENT_PATH = re.compile(r"^/(?:evinfo|event)/.+")


def parse_date(text: str, today: datetime | None = None) -> datetime | None:
    """
    Parse the Japanese date formats used on the site.

    Accepts 2025.10.3, 2025年10月3日, 2025/10/3, 2025-10-03 and, with the
    current year assumed, 10月3日. Dates are midnight JST.
    """
    if not text:
        return None
    match = _FULL_DATE.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
    else:
        match = _MONTH_DAY.search(text)
        if not match:
            return None
        year = (today or datetime.now(JST)).year
        month, day = int(match.group(1)), int(match.group(2))
    try:
        return datetime(year, month, day, tzinfo=JST)
    except ValueError:
        return None


def map_news_category(label: str) -> str:
    """Map a Japanese category label to its category key."""
    if not label:
        return DEFAULT_NEWS_CATEGORY
    if label in NEWS_CATEGORY_MAP:
        return NEWS_CATEGORY_MAP[label]
    for name, key in NEWS_CATEGORY_MAP.items():
        if name in label:
            return key
    return DEFAULT_NEWS_CATEGORY


def detect_prefecture(text: str) -> tuple[str, str | None]:
    """
    Return (prefecture code, location label) mentioned in the text.

    Nationwide mentions and texts naming no prefecture map to the
    nationwide code.
    """
    if "全国" in text:
        return NATIONWIDE_PREFECTURE, "全国どこでも"
    for name, code in PREFECTURE_CODES_BY_NAME.items():
        if name in text:
            return code, name
    return NATIONWIDE_PREFECTURE, None


def classify_event_type(title: str, context: str = "") -> str:
    haystack = f"{title}\n{context}".lower()
    for event_type, keywords in EVENT_TYPE_RULES:
        if any(keyword in haystack for keyword in keywords):
            return event_type
    return DEFAULT_EVENT_TYPE


def _text(node: Tag | None) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ").split())


def _same_site(url: str, base_url: str) -> bool:
    return urlsplit(url).hostname == urlsplit(base_url).hostname


def parse_news_page(html: str, page_url: str, fetched_at: datetime | None = None) -> list[RawEntry]:
    """
    Extract dated news list entries from the news page.

    An entry is a link whose text (or enclosing list item) reads
    "<yyyy.m.d> <category> <title>". Undated links are ignored.
    """
    soup = BeautifulSoup(html, "html.parser")
    fetched_at = fetched_at or datetime.now(timezone.utc)
    seen: set[str] = set()
    entries: list[RawEntry] = []

    for link in soup.find_all("a", href=True):
        url = urljoin(page_url, link["href"].strip())
        if not _same_site(url, page_url) or url in seen:
            continue
        if (urlsplit(url).path.rstrip("/") or "/") in EXCLUDED_NEWS_PATHS:
            continue

        match = _NEWS_LINE.search(_text(link)) or _NEWS_LINE.search(
            _text(link.find_parent(["li", "div"]))
        )
        if not match:
            continue

        date_text, category_label, title = match.groups()
        title = title.strip() or _text(link)
        if len(title) < 10 or any(excluded in title for excluded in EXCLUDED_NEWS_TITLES):
            continue

        published_at = parse_date(date_text)
        if published_at is None:
            continue

        seen.add(url)
        entries.append(
            RawEntry(
                platform=Platform.WEBSITE,
                data={
                    "domain": PostDomain.NEWS.value,
                    "title": title[:MAX_TITLE_LENGTH],
                    "link": url,
                    "published_at": published_at,
                    "category": map_news_category(category_label),
                },
                source_url=page_url,
                fetched_at=fetched_at,
            )
        )

    return entries


def parse_team_page(html: str, page_url: str, fetched_at: datetime | None = None) -> list[RawEntry]:
    """
    Extract team / member update links from the team site.

    Updates without a visible date are stamped with the fetch time.
    """
    soup = BeautifulSoup(html, "html.parser")
    fetched_at = fetched_at or datetime.now(timezone.utc)
    seen: set[str] = set()
    entries: list[RawEntry] = []

    links = soup.select(
        'a[href*="/team/"], a[href*="/member/"], a[href*="/update/"], '
        ".team-list a[href], .member-list a[href], .update-list a[href]"
    )
    for link in links:
        url = urljoin(page_url, link["href"].strip())
        if url in seen or not _same_site(url, page_url):
            continue

        title = _text(link)
        if not title:
            heading = link.find(["h1", "h2", "h3", "h4"]) or link.select_one(".title")
            title = _text(heading)
        if len(title) <= 5:
            continue

        container = link.find_parent(["article", "li", "div"])
        date_node = container.select_one(".date, .published, time, .datetime") if container else None
        published_at = parse_date(_text(date_node)) or fetched_at

        seen.add(url)
        entries.append(
            RawEntry(
                platform=Platform.WEBSITE,
                data={
                    "domain": PostDomain.NEWS.value,
                    "title": title[:MAX_TITLE_LENGTH],
                    "link": url,
                    "published_at": published_at,
                    "category": TEAM_CATEGORY,
                },
                source_url=page_url,
                fetched_at=fetched_at,
            )
        )

    return entries


def _recent_events_scope(soup: BeautifulSoup) -> Tag:
    heading = next(
        (h for h in soup.find_all(["h1", "h2", "h3", "h4"]) if RECENT_EVENTS_HEADING in h.get_text()),
        None,
    )
    container = heading.parent if heading is not None and heading.parent is not None else soup
    block = container.find(["ul", "ol", "div", "section"])
    return block or container


def parse_events_page(html: str, page_url: str, fetched_at: datetime | None = None) -> list[RawEntry]:
    """
    Extract events from the "recently added" section of the events page.

    Each event gets a prefecture (nationwide when none is named), an event
    type from its title and surrounding text, and a registration flag.
    Events whose date cannot be read are stamped with the fetch time.
    """
    soup = BeautifulSoup(html, "html.parser")
    fetched_at = fetched_at or datetime.now(timezone.utc)
    seen: set[str] = set()
    entries: list[RawEntry] = []

    for link in _recent_events_scope(soup).find_all("a", href=True):
        url = urljoin(page_url, link["href"].strip())
        if not _same_site(url, page_url) or not _EVENT_PATH.match(urlsplit(url).path):
            continue
        if url.rstrip("/") == page_url.rstrip("/") or url in seen:
            continue

        context = _text(link.find_parent(["li", "div", "tr", "td"]))
        title = _text(link)
        if not title:
            row = link.find_parent(["li", "div", "tr"])
            heading = row.find(["h1", "h2", "h3", "h4"]) if row else None
            title = _text(heading)
        if len(title) < 5:
            continue

        event_date = parse_date(context, today=fetched_at)
        prefecture, location = detect_prefecture(context)
        event_type = classify_event_type(title, context)

        description = context
        if description.startswith(title):
            description = description[len(title):].strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            description = description[:MAX_DESCRIPTION_LENGTH] + "..."

        seen.add(url)
        entries.append(
            RawEntry(
                platform=Platform.WEBSITE,
                data={
                    "domain": PostDomain.EVENT.value,
                    "title": title[:MAX_TITLE_LENGTH],
                    "link": url,
                    "summary": description,
                    "published_at": event_date or fetched_at,
                    "category": event_type,
                    "prefecture": prefecture,
                    "attributes": {
                        "event_date": event_date.isoformat() if event_date else None,
                        "location": location,
                        "event_type": event_type,
                        "registration_required": "申込" in context or "登録" in context,
                    },
                },
                source_url=page_url,
                fetched_at=fetched_at,
            )
        )

    return entries


@dataclass
class ArticleDetails:
    thumbnail_url: str | None = None
    snippet: str | None = None


def extract_article_details(html: str, page_url: str, snippet_length: int = 50) -> ArticleDetails:
    """
    Pull a thumbnail and a short text snippet from an article page.

    Thumbnail preference: og:image, twitter:image, link[rel=image_src], then
    the first <img>. The snippet is the first paragraph longer than ten
    characters, cut to ``snippet_length`` characters.
    """
    soup = BeautifulSoup(html, "html.parser")

    thumbnail = None
    for selector, attr in (
        ('meta[property="og:image"]', "content"),
        ('meta[name="og:image"]', "content"),
        ('meta[name="twitter:image"]', "content"),
        ('meta[name="twitter:image:src"]', "content"),
        ('link[rel="image_src"]', "href"),
        ("img[src]", "src"),
    ):
        node = soup.select_one(selector)
        if node is not None and node.get(attr):
            thumbnail = urljoin(page_url, node[attr].strip())
            break

    snippet = None
    for selector in (".article-content", ".post-content", ".entry-content", ".content", "main p", "article p", "p"):
        node = soup.select_one(selector)
        text = _text(node)
        if len(text) > 10:
            snippet = text
            break
    if snippet and len(snippet) > snippet_length:
        snippet = snippet[:snippet_length] + "..."

    return ArticleDetails(thumbnail_url=thumbnail, snippet=snippet)


async def enrich_post(
    fetcher: FeedFetcher,
    post: NormalizedPost,
    snippet_length: int = 50,
) -> NormalizedPost:
    """
    Add thumbnail and snippet from the article page to a scraped post.

    Enrichment is best effort: when the article cannot be fetched the post
    is returned unchanged.
    """
    try:
        result = await fetcher.fetch(FetchTarget(post.post_url, Platform.WEBSITE, FetchKind.PAGE))
    except FetchError as e:
        logger.debug(f"Article enrichment skipped for {post.post_url}: {e}")
        return post

    details = extract_article_details(result.text, post.post_url, snippet_length)
    update: dict = {}
    if details.thumbnail_url and not post.thumbnail_url:
        update["thumbnail_url"] = details.thumbnail_url
        update["media_urls"] = (details.thumbnail_url, *post.media_urls)
    if details.snippet and post.domain is PostDomain.NEWS and post.content == post.title:
        update["content"] = details.snippet
    return post.model_copy(update=update) if update else post
