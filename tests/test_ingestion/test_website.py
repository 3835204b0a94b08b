"""Tests for party website scraping."""

from datetime import datetime, timezone

import httpx
import pytest
import respx

from party_feed.ingestion.http_client import FeedFetcher
from party_feed.ingestion.schemas import Platform, Scope
from party_feed.ingestion.normalizer import PlatformNormalizer
from party_feed.ingestion.website import (
    JST,
    classify_event_type,
    detect_prefecture,
    enrich_post,
    extract_article_details,
    map_news_category,
    parse_date,
    parse_events_page,
    parse_news_page,
    parse_team_page,
)

NEWS_URL = "https://new-kokumin.jp/news"
TEAM_URL = "https://team.new-kokumin.jp/"
EVENTS_URL = "https://team.new-kokumin.jp/evinfo/"
FETCHED_AT = datetime(2025, 10, 5, 3, 0, tzinfo=timezone.utc)

NEWS_HTML = """
<html><body>
  <a href="/">トップ</a>
  <ul class="news-list">
    <li><a href="/news/policy/20251003_1">2025.10.3 政策 ガソリン税の暫定税率廃止法案を提出しました</a></li>
    <li><a href="/news/business/20251001_2">2025.10.1 党務 両院議員総会の開催について</a></li>
    <li><a href="/news/business/20251001_2">2025.10.1 党務 両院議員総会の開催について</a></li>
    <li><a href="/news/other/x">2025.9.30 お知らせ 短い</a></li>
    <li><a href="https://example.org/news/1">2025.9.29 政策 外部サイトの記事なので対象外です</a></li>
    <li><a href="/news/policy/undated">日付のないリンクは無視されるべきです</a></li>
  </ul>
</body></html>
"""

TEAM_HTML = """
<html><body>
  <div class="update-list">
    <article>
      <a href="/update/2025-10-02">サポーター向け活動報告会のご案内</a>
      <span class="date">2025年10月2日</span>
    </article>
    <article>
      <a href="/member/join">入会</a>
    </article>
  </div>
</body></html>
"""

EVENTS_HTML = """
<html><body>
  <section>
    <h2>開催予定</h2>
    <ul><li><a href="/evinfo/old">古いイベント一覧の項目です</a></li></ul>
  </section>
  <section>
    <h2>最近追加された情報</h2>
    <ul>
      <li><a href="/evinfo/101">東京 街頭演説会のお知らせ</a> 10月12日 東京都新宿区 申込不要</li>
      <li><a href="/evinfo/102">全国一斉ポスティング活動</a> 2025年10月20日 全国 要登録</li>
      <li><a href="/evinfo/103">オンライン勉強会</a> 日程調整中</li>
      <li><a href="https://example.org/evinfo/1">外部のイベントは対象外</a></li>
    </ul>
  </section>
</body></html>
"""


class TestHelpers:
    def test_parse_dotted_date(self):
        assert parse_date("2025.10.3") == datetime(2025, 10, 3, tzinfo=JST)

    def test_parse_kanji_date(self):
        assert parse_date("2025年1月15日（水）") == datetime(2025, 1, 15, tzinfo=JST)

    def test_month_day_uses_reference_year(self):
        today = datetime(2024, 6, 1, tzinfo=JST)
        assert parse_date("10月12日", today=today) == datetime(2024, 10, 12, tzinfo=JST)

    def test_unparseable_date(self):
        assert parse_date("近日公開") is None
        assert parse_date("2025.13.40") is None

    def test_category_mapping(self):
        assert map_news_category("政策") == "policy"
        assert map_news_category("国民民主プレス号外") == "national_democratic_press_outer"
        assert map_news_category("未知") == "party_hq"

    def test_prefecture_detection(self):
        assert detect_prefecture("大阪府大阪市で開催") == ("27", "大阪")
        assert detect_prefecture("全国どこでも参加可") == ("48", "全国どこでも")
        assert detect_prefecture("オンライン") == ("48", None)

    def test_event_type_rules(self):
        assert classify_event_type("候補者募集説明会") == "candidate_recruitment"
        assert classify_event_type("街頭演説") == "street_campaign_support"
        assert classify_event_type("ポスティング") == "poster_posting"
        assert classify_event_type("党本部定例ポスティング") == "party_hq_regular_posting"
        assert classify_event_type("ポスター貼り") == "poster_display"
        assert classify_event_type("交流会", "タウンミーティング形式") == "town_meeting"
        assert classify_event_type("勉強会") == "other"


class TestParseNewsPage:
    def test_extracts_dated_entries(self):
        entries = parse_news_page(NEWS_HTML, NEWS_URL, fetched_at=FETCHED_AT)

        assert [e.data["link"] for e in entries] == [
            "https://new-kokumin.jp/news/policy/20251003_1",
            "https://new-kokumin.jp/news/business/20251001_2",
        ]
        first = entries[0]
        assert first.platform is Platform.WEBSITE
        assert first.data["title"] == "ガソリン税の暫定税率廃止法案を提出しました"
        assert first.data["category"] == "policy"
        assert first.data["domain"] == "news"
        assert first.data["published_at"] == datetime(2025, 10, 3, tzinfo=JST)
        assert entries[1].data["category"] == "party_hq"

    def test_entries_normalize(self):
        entries = parse_news_page(NEWS_HTML, NEWS_URL, fetched_at=FETCHED_AT)
        posts, skips = PlatformNormalizer().normalize_many(entries, Scope.PARTY_HQ)

        assert skips == []
        assert posts[0].content == posts[0].title
        assert posts[0].prefecture == "48"


class TestParseTeamPage:
    def test_extracts_updates(self):
        entries = parse_team_page(TEAM_HTML, TEAM_URL, fetched_at=FETCHED_AT)

        assert len(entries) == 1
        data = entries[0].data
        assert data["link"] == "https://team.new-kokumin.jp/update/2025-10-02"
        assert data["category"] == "announcement"
        assert data["published_at"] == datetime(2025, 10, 2, tzinfo=JST)


class TestParseEventsPage:
    def test_only_recent_section(self):
        entries = parse_events_page(EVENTS_HTML, EVENTS_URL, fetched_at=FETCHED_AT)

        links = [e.data["link"] for e in entries]
        assert links == [
            "https://team.new-kokumin.jp/evinfo/101",
            "https://team.new-kokumin.jp/evinfo/102",
            "https://team.new-kokumin.jp/evinfo/103",
        ]

    def test_event_fields(self):
        entries = parse_events_page(EVENTS_HTML, EVENTS_URL, fetched_at=FETCHED_AT)
        tokyo, nationwide, undated = (e.data for e in entries)

        assert tokyo["domain"] == "event"
        assert tokyo["prefecture"] == "13"
        assert tokyo["category"] == "street_campaign_support"
        assert tokyo["published_at"] == datetime(2025, 10, 12, tzinfo=JST)
        assert tokyo["attributes"]["location"] == "東京"

        assert nationwide["prefecture"] == "48"
        assert nationwide["category"] == "poster_posting"
        assert nationwide["attributes"]["registration_required"] is True

        # No readable date: stamped with the fetch time
        assert undated["published_at"] == FETCHED_AT
        assert undated["attributes"]["event_date"] is None


class TestArticleDetails:
    def test_og_image_preferred(self):
        html = """
        <html><head>
          <meta property="og:image" content="/img/og.jpg">
          <meta name="twitter:image" content="https://cdn/tw.jpg">
        </head><body><article><p>これは記事の本文の最初の段落です。詳しくは以下をご覧ください。</p></article></body></html>
        """
        details = extract_article_details(html, "https://new-kokumin.jp/news/1", snippet_length=10)

        assert details.thumbnail_url == "https://new-kokumin.jp/img/og.jpg"
        assert details.snippet == "これは記事の本文の最..."

    def test_falls_back_to_first_image(self):
        html = '<html><body><img src="https://cdn/a.png"><p>短い</p></body></html>'
        details = extract_article_details(html, "https://new-kokumin.jp/news/1")

        assert details.thumbnail_url == "https://cdn/a.png"
        assert details.snippet is None


class TestEnrichPost:
    @pytest.mark.asyncio
    @respx.mock
    async def test_adds_thumbnail_and_snippet(self):
        entries = parse_news_page(NEWS_HTML, NEWS_URL, fetched_at=FETCHED_AT)
        post = PlatformNormalizer().normalize(entries[0], Scope.PARTY_HQ)
        respx.get(post.post_url).mock(
            return_value=httpx.Response(
                200,
                text='<meta property="og:image" content="https://cdn/og.jpg">'
                "<p>法案の概要をお知らせします。詳細は本文をご覧ください。</p>",
            )
        )

        async with FeedFetcher() as fetcher:
            enriched = await enrich_post(fetcher, post, snippet_length=50)

        assert enriched.thumbnail_url == "https://cdn/og.jpg"
        assert enriched.media_urls[0] == "https://cdn/og.jpg"
        assert enriched.content.startswith("法案の概要")

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_failure_returns_post_unchanged(self):
        entries = parse_news_page(NEWS_HTML, NEWS_URL, fetched_at=FETCHED_AT)
        post = PlatformNormalizer().normalize(entries[0], Scope.PARTY_HQ)
        respx.get(post.post_url).mock(return_value=httpx.Response(404))

        async with FeedFetcher() as fetcher:
            assert await enrich_post(fetcher, post) is post
