"""Tests for the request router."""

import pytest

from conftest import ORIGIN, get
from offlinecache.config import RoutingConfig
from offlinecache.models import Request, StrategyClass
from offlinecache.router import RequestRouter, build_rules, is_api, is_image, is_navigation


@pytest.fixture
def router() -> RequestRouter:
    return RequestRouter(RoutingConfig())


class TestPredicates:
    """Each classifier predicate in isolation."""

    def test_navigation_mode(self) -> None:
        assert is_navigation(get("/inquiry", mode="navigate"))

    def test_accept_html(self) -> None:
        assert is_navigation(get("/inquiry", headers={"accept": "text/html,application/xhtml+xml"}))

    def test_not_navigation(self) -> None:
        assert not is_navigation(get("/app.js", headers={"Accept": "*/*"}))

    def test_api_prefix(self) -> None:
        assert is_api(get("/api/testimonials"), "/api/")
        assert not is_api(get("/apidocs"), "/api/")

    def test_api_ignores_query(self) -> None:
        assert is_api(get("/api/content-sections/hero?lang=en"), "/api/")

    def test_image_destination(self) -> None:
        assert is_image(get("/logo.svg", destination="image"), "/images/")

    def test_image_path_substring(self) -> None:
        assert is_image(get("/static/images/boat.jpg"), "/images/")

    def test_not_image(self) -> None:
        assert not is_image(get("/assets/app.css", destination="style"), "/images/")


class TestRules:
    """Tests for the ordered rule list."""

    def test_priority_order(self) -> None:
        rules = build_rules(RoutingConfig())
        assert [r.strategy for r in rules] == [
            StrategyClass.NAVIGATION,
            StrategyClass.API,
            StrategyClass.IMAGE,
            StrategyClass.STATIC,
        ]

    def test_last_rule_matches_everything(self) -> None:
        rules = build_rules(RoutingConfig())
        assert rules[-1].predicate(Request(url="https://other.example/x", method="DELETE"))


class TestClassify:
    """Tests for RequestRouter.classify."""

    @pytest.mark.parametrize(
        "request_, expected",
        [
            (get("/", mode="navigate"), StrategyClass.NAVIGATION),
            (get("/api/testimonials"), StrategyClass.API),
            (get("/images/logoon.png"), StrategyClass.IMAGE),
            (get("/hero.webp", destination="image"), StrategyClass.IMAGE),
            (get("/manifest.json"), StrategyClass.STATIC),
            (Request(url=ORIGIN + "/api/contact-message", method="POST"), StrategyClass.API),
        ],
    )
    def test_classifies(self, router: RequestRouter, request_: Request, expected: StrategyClass) -> None:
        assert router.classify(request_) is expected

    def test_navigation_beats_api(self, router: RequestRouter) -> None:
        """An HTML request under the API prefix is still a navigation."""
        request = get("/api/testimonials", headers={"Accept": "text/html"})
        assert router.classify(request) is StrategyClass.NAVIGATION

    def test_api_beats_image(self, router: RequestRouter) -> None:
        request = get("/api/gallery-images", destination="image")
        assert router.classify(request) is StrategyClass.API

    def test_custom_prefixes(self) -> None:
        router = RequestRouter(RoutingConfig(api_prefix="/v1/", images_path="/media/"))
        assert router.classify(get("/v1/hero")) is StrategyClass.API
        assert router.classify(get("/media/boat.jpg")) is StrategyClass.IMAGE
        assert router.classify(get("/api/hero")) is StrategyClass.STATIC

    def test_deterministic(self, router: RequestRouter) -> None:
        request = get("/images/boat.jpg")
        assert {router.classify(request) for _ in range(5)} == {StrategyClass.IMAGE}
