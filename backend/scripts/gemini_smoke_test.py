from dotenv import load_dotenv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

load_dotenv(".env")

import asyncio
import base64
import json

from app.core.settings import settings
from app.services.llm.gemini import get_generator


async def main() -> None:
    prompt = " ".join(sys.argv[1:]).strip() or "The water cycle, explained for kids"
    out_dir = Path(__file__).resolve().parent / "out"
    out_dir.mkdir(parents=True, exist_ok=True)

    generator = get_generator()
    try:
        result = await generator.generate(prompt, "9:16", "1K")
    finally:
        await generator.aclose()

    summary = {
        "model": settings.gemini_model,
        "has_image": result.has_image,
        "mime_type": result.mime_type,
        "text_response": (result.text_response or "")[:300],
    }
    if result.has_image:
        ext = (result.mime_type or "image/png").split("/", 1)[-1]
        path = out_dir / f"smoke.{ext}"
        path.write_bytes(base64.b64decode(result.image_base64 or ""))
        summary["saved_to"] = str(path)
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    asyncio.run(main())
