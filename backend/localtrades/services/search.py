import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

from localtrades.models import SearchResult, TradeCategory, format_category
from localtrades.services.postcodes import PostcodeMatcher, normalize_postcode, postcode_area
from localtrades.services.reliability import calculate_reliability_score
from localtrades.services.trade_store import TradeStore, TradeStoreValidationError

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "ALL"


def parse_category_filter(category: Union[str, TradeCategory, None]) -> Optional[TradeCategory]:
    if category is None or isinstance(category, TradeCategory):
        return category
    cleaned = category.strip().upper()
    if not cleaned or cleaned == ALL_CATEGORIES:
        return None
    try:
        return TradeCategory(cleaned)
    except ValueError:
        raise TradeStoreValidationError(f"Invalid category: {category}") from None


@dataclass
class SearchMatcher:
    store: TradeStore
    matcher: PostcodeMatcher = field(default_factory=PostcodeMatcher)

    def search(
        self,
        postcode: Optional[str],
        category: Union[str, TradeCategory, None] = None,
        include_reliability: bool = False,
        now: Optional[datetime] = None,
    ) -> List[SearchResult]:
        search_postcode = normalize_postcode(postcode or "")
        if not search_postcode:
            raise TradeStoreValidationError("Postcode is required")
        category_filter = parse_category_filter(category)

        candidates = self.store.find_providers_by_area_and_category(
            postcode_area(search_postcode),
            category_filter,
            exact_postcode=search_postcode,
        )
        owners = self.store.get_users_by_ids(profile.user_id for profile in candidates)

        results: List[SearchResult] = []
        for profile in candidates:
            if not (profile.active and profile.verified):
                continue
            if category_filter is not None and profile.category != category_filter:
                continue
            eligible, distance = self.matcher.eligible(search_postcode, profile.postcode, profile.service_radius)
            if not eligible:
                continue
            owner = owners.get(profile.user_id)
            results.append(
                SearchResult(
                    **profile.model_dump(),
                    distance=distance,
                    reliability=calculate_reliability_score(profile, now) if include_reliability else None,
                    category_label=format_category(profile.category),
                    owner_name=owner.name if owner else None,
                    owner_email=owner.email if owner else None,
                    owner_phone=owner.phone if owner else None,
                )
            )

        # Stable sort keeps the store's newest-first order within equal distances.
        results.sort(key=lambda result: result.distance)
        logger.debug("Search %s (%s) matched %d of %d candidates", search_postcode, category_filter, len(results), len(candidates))
        return results
