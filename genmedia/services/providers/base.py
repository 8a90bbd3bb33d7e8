from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from genmedia.domain.models import JobHandle, VendorStatus


class VendorClient(Protocol):
    provider_name: str

    async def submit(
        self,
        model_id: str,
        payload: Dict[str, Any],
        *,
        webhook_url: Optional[str] = None,
    ) -> JobHandle:
        ...

    async def get_status(self, handle: JobHandle) -> VendorStatus:
        ...


def collect_output_urls(value: Any) -> List[str]:
    """
    Flatten a vendor output field into a list of strings:
      "https://..."                      -> ["https://..."]
      ["https://a", "https://b"]         -> ["https://a", "https://b"]
      {"url": "https://..."}             -> ["https://..."]
      [{"url": ...}, {"url": ...}]       -> [...]
    """
    if value is None:
        return []
    if isinstance(value, str):
        s = value.strip()
        return [s] if s else []
    if isinstance(value, dict):
        url = value.get("url") or value.get("image_url") or value.get("video_url")
        return [str(url).strip()] if isinstance(url, str) and url.strip() else []
    if isinstance(value, (list, tuple)):
        out: List[str] = []
        for item in value:
            out.extend(collect_output_urls(item))
        return out
    return []


def error_message(value: Any, default: str = "generation failed") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip() or default
    if isinstance(value, dict):
        msg = value.get("message") or value.get("detail") or value.get("error") or value.get("msg")
        if msg is not None:
            return error_message(msg, default)
        return default
    if isinstance(value, list) and value:
        return error_message(value[0], default)
    return str(value)
