"""Thin clients for the third-party APIs used by commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import aiohttp
from openai import AsyncOpenAI

log = logging.getLogger(__name__)

YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
OMDB_URL = "https://www.omdbapi.com/"


class ServiceError(RuntimeError):
    pass


class ServiceNotConfiguredError(ServiceError):
    def __init__(self, setting: str) -> None:
        super().__init__(f"{setting} not set in environment")
        self.setting = setting


@dataclass
class VideoResult:
    title: str
    video_id: str

    @property
    def url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"


@dataclass
class MovieInfo:
    title: str
    year: str = "N/A"
    rating: str = "N/A"
    genre: str = "N/A"
    director: str = "N/A"
    actors: str = "N/A"
    plot: str = "N/A"
    poster: Optional[str] = None


class ExternalServices:
    def __init__(
        self,
        *,
        openai_api_key: Optional[str] = None,
        chat_model: str = "gpt-4o-mini",
        image_size: str = "1024x1024",
        youtube_api_key: Optional[str] = None,
        omdb_api_key: Optional[str] = None,
        timeout: float = 15.0,
    ) -> None:
        self.client = AsyncOpenAI(api_key=openai_api_key) if openai_api_key else None
        self.chat_model = chat_model
        self.image_size = image_size
        self.youtube_api_key = youtube_api_key
        self.omdb_api_key = omdb_api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _openai(self) -> AsyncOpenAI:
        if self.client is None:
            raise ServiceNotConfiguredError("OPENAI_API_KEY")
        return self.client

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        if self.client is not None:
            await self.client.close()

    async def chat(self, prompt: str) -> str:
        response = await self._openai().chat.completions.create(
            model=self.chat_model,
            messages=[{"role": "user", "content": prompt}],
        )
        return (response.choices[0].message.content or "").strip()

    async def generate_image(self, prompt: str, style: str = "") -> Optional[str]:
        final_prompt = f"{prompt}, in {style} style" if style else prompt
        response = await self._openai().images.generate(
            prompt=final_prompt, n=1, size=self.image_size
        )
        if not response.data:
            return None
        return response.data[0].url

    async def search_videos(self, query: str, *, limit: int = 3) -> List[VideoResult]:
        if not self.youtube_api_key:
            raise ServiceNotConfiguredError("YOUTUBE_API_KEY")
        params = {
            "part": "snippet",
            "q": query,
            "maxResults": str(limit),
            "type": "video",
            "key": self.youtube_api_key,
        }
        async with self._http().get(YOUTUBE_SEARCH_URL, params=params) as resp:
            if resp.status != 200:
                raise ServiceError(f"video search failed with HTTP {resp.status}")
            payload = await resp.json()
        results: List[VideoResult] = []
        for item in payload.get("items") or []:
            video_id = (item.get("id") or {}).get("videoId")
            title = (item.get("snippet") or {}).get("title")
            if video_id and title:
                results.append(VideoResult(title=title, video_id=video_id))
        return results

    async def lookup_movie(self, title: str) -> Optional[MovieInfo]:
        if not self.omdb_api_key:
            raise ServiceNotConfiguredError("IMDB_API_KEY")
        params = {"t": title, "apikey": self.omdb_api_key}
        async with self._http().get(OMDB_URL, params=params) as resp:
            if resp.status != 200:
                raise ServiceError(f"movie lookup failed with HTTP {resp.status}")
            movie = await resp.json(content_type=None)
        if not isinstance(movie, dict) or movie.get("Response") == "False":
            return None
        poster = movie.get("Poster")
        return MovieInfo(
            title=movie.get("Title") or "N/A",
            year=movie.get("Year") or "N/A",
            rating=movie.get("imdbRating") or "N/A",
            genre=movie.get("Genre") or "N/A",
            director=movie.get("Director") or "N/A",
            actors=movie.get("Actors") or "N/A",
            plot=movie.get("Plot") or "N/A",
            poster=poster if poster and poster != "N/A" else None,
        )
