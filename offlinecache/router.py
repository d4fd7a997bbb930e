"""Request classification into strategy classes."""

from collections.abc import Callable
from dataclasses import dataclass

from .config import RoutingConfig
from .models import Request, StrategyClass

Predicate = Callable[[Request], bool]


@dataclass(frozen=True)
class ClassifierRule:
    """A strategy class and the predicate that selects it."""

    strategy: StrategyClass
    predicate: Predicate


def is_navigation(request: Request) -> bool:
    """Page navigations and requests preferring an HTML document."""
    return request.is_navigation or request.accepts_html


def is_api(request: Request, api_prefix: str) -> bool:
    return request.path.startswith(api_prefix)


def is_image(request: Request, images_path: str) -> bool:
    return request.destination == "image" or images_path in request.path


def build_rules(config: RoutingConfig) -> list[ClassifierRule]:
    """Build the classifier rules in priority order.

    1. navigation - navigate mode or Accept: text/html
    2. api - path under the API prefix
    3. image - image destination or path containing the images segment
    4. static - everything else
    """
    return [
        ClassifierRule(StrategyClass.NAVIGATION, is_navigation),
        ClassifierRule(StrategyClass.API, lambda r: is_api(r, config.api_prefix)),
        ClassifierRule(StrategyClass.IMAGE, lambda r: is_image(r, config.images_path)),
        ClassifierRule(StrategyClass.STATIC, lambda r: True),
    ]


class RequestRouter:
    """Classifies requests by evaluating rules top to bottom; first match wins."""

    def __init__(self, config: RoutingConfig) -> None:
        self._rules = build_rules(config)

    @property
    def rules(self) -> list[ClassifierRule]:
        return list(self._rules)

    def classify(self, request: Request) -> StrategyClass:
        for rule in self._rules:
            if rule.predicate(request):
                return rule.strategy
        return StrategyClass.STATIC
