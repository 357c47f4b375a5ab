from __future__ import annotations

from urllib.parse import quote, urlencode

from storyplay.config import settings


def build_scene_image_url(image_prompt: str | None, *, seed: int) -> str | None:
    prompt = " ".join(str(image_prompt or "").split())
    if not prompt:
        return None
    query = urlencode(
        {
            "width": int(settings.scene_image_width),
            "height": int(settings.scene_image_height),
            "model": settings.scene_image_model,
            "enhance": "true",
            "nologo": "true",
            "seed": int(seed),
        }
    )
    base = settings.scene_image_base_url.rstrip("/")
    return f"{base}/{quote(prompt, safe='')}?{query}"
