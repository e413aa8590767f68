"""
CTA Activation Set - which configured CTAs are currently shown to attendees
"""
import logging
from typing import List

from services.webinar_store import WebinarStore
from utils.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def parse_cta_index(raw) -> int:
    """Accept ints and integer strings only"""
    if isinstance(raw, bool):
        raise ValidationError("Invalid CTA index")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            pass
    raise ValidationError("Invalid CTA index")


class CtaActivationSet:
    def __init__(self, store: WebinarStore):
        self.store = store

    async def activate(self, webinar_id: str, raw_index) -> List[int]:
        index = parse_cta_index(raw_index)
        if index < 0:
            raise ValidationError("CTA index out of range")

        active = await self.store.add_active_cta(webinar_id, index)
        if active is None:
            # The filter requires ctas.<index>; find out which half failed
            webinar = await self.store.get_webinar(webinar_id)
            if not webinar:
                raise NotFoundError("Webinar")
            raise ValidationError("CTA index out of range")

        logger.info(f"CTA {index} activated for webinar {webinar_id}")
        return sorted(active)

    async def deactivate(self, webinar_id: str, raw_index) -> List[int]:
        """Removing an index that is not active (or does not exist) is a no-op"""
        index = parse_cta_index(raw_index)
        active = await self.store.remove_active_cta(webinar_id, index)
        if active is None:
            raise NotFoundError("Webinar")
        logger.info(f"CTA {index} deactivated for webinar {webinar_id}")
        return sorted(active)

    async def get_active(self, webinar_id: str) -> List[int]:
        webinar = await self.store.get_webinar(webinar_id)
        if not webinar:
            raise NotFoundError("Webinar")
        return sorted(webinar.get("active_cta_indices", []))


def build_cta_activation_set() -> CtaActivationSet:
    from services.webinar_store import webinar_store
    return CtaActivationSet(webinar_store)


# Singleton instance
cta_activation_set = build_cta_activation_set()
