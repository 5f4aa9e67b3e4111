"""Calls to the hosted completions API.

Every helper degrades to canned text when the API is unavailable, so callers
never have to handle transport errors.
"""

import json
from typing import Dict, List, Optional

import httpx
from flask import current_app

from taleon.models import GENRES

STORY_FALLBACK = 'The story continues with a new twist...'
ROAST_FALLBACK = 'No roast available.'
META_FALLBACK = {'title': 'Untitled Tale', 'genre': 'Custom'}

GENRE_ALIASES = {
    'Fantasy': 'fantasy',
    'Horror': 'horror',
    'Sci-Fi': 'sci-fi',
    'Sci Fi': 'sci-fi',
    'Science Fiction': 'sci-fi',
    'Mystery': 'mystery',
    'Adventure': 'adventure',
    'Romance': 'romance',
    'Comedy': 'comedy',
    'Drama': 'drama',
    'Custom': 'custom',
}


def ai_configured() -> bool:
    return bool(current_app.config.get('GROQ_API_KEY'))


def call_completion(messages: List[Dict[str, str]], max_tokens: int = 200, temperature: float = 0.9) -> Optional[str]:
    """POST a chat completion and return the first message's text, or None."""
    cfg = current_app.config
    if not ai_configured():
        current_app.logger.warning("[ai] GROQ_API_KEY not set, skipping completion")
        return None

    body = {
        'model': cfg.get('AI_MODEL', 'llama-3.1-8b-instant'),
        'messages': messages,
        'max_tokens': max_tokens,
        'temperature': temperature,
    }
    headers = {
        'Authorization': f"Bearer {cfg['GROQ_API_KEY']}",
        'Content-Type': 'application/json',
    }
    try:
        with httpx.Client(timeout=float(cfg.get('AI_TIMEOUT_SEC', 30))) as client:
            response = client.post(cfg['AI_COMPLETIONS_URL'], json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        current_app.logger.error(f"[ai] completion failed: {exc}")
        return None

    try:
        content = data['choices'][0]['message']['content']
    except (KeyError, IndexError, TypeError):
        current_app.logger.error(f"[ai] unexpected response shape: {str(data)[:200]}")
        return None
    content = (content or '').strip()
    return content or None


def generate_story_text(story_so_far: str, genre: Optional[str]) -> str:
    system_prompt = (
        "You are an imaginative co-author for a turn-based story game. "
        "Write the next 2-4 sentences that ADVANCE THE PLOT in a coherent way. "
        "Your contribution must: "
        "1. Build logically on what came before "
        "2. Introduce new elements or complications "
        "3. Maintain consistent tone and genre "
        "4. NOT be random or disconnected "
        "5. Help create a compelling narrative arc "
        "Keep the story engaging and avoid ending it prematurely."
    )
    user_prompt = (
        f"GENRE: {genre or 'Custom'}\nSTORY SO FAR:\n{story_so_far}\n\n"
        "Write the next coherent part of the story:"
    )
    text = call_completion(
        [{'role': 'system', 'content': system_prompt}, {'role': 'user', 'content': user_prompt}],
        max_tokens=200,
        temperature=0.7,
    )
    return text or STORY_FALLBACK


def generate_roast_text(player_name: str, story, result: str) -> str:
    system_prompt = (
        "You are a witty and savage AI roast master. "
        "Create a short, funny roast (1-3 sentences max) about a player's storytelling. "
        "Be clever and playful, not hateful or discriminatory."
    )
    if isinstance(story, list):
        story_text = '\n'.join(
            f"{s.get('player', 'Player')}: {s.get('text', '')}" if isinstance(s, dict) else str(s) for s in story
        )
    else:
        story_text = str(story or '')
    user_prompt = f"Player: {player_name}\nGame Result: {result}\nStory:\n{story_text}\nNow roast the player!"
    text = call_completion(
        [{'role': 'system', 'content': system_prompt}, {'role': 'user', 'content': user_prompt}],
        max_tokens=100,
        temperature=0.9,
    )
    return text or ROAST_FALLBACK


def normalize_genre(raw) -> str:
    raw = str(raw or 'custom').strip()
    genre = GENRE_ALIASES.get(raw, raw.lower())
    return genre if genre in GENRES else 'custom'


def generate_game_meta() -> Dict[str, str]:
    """Ask for a catchy title and a genre; always returns both keys."""
    system_prompt = "You are a creative game session organizer for a collaborative storytelling game."
    user_prompt = (
        'Generate a JSON object with a catchy "title" (max 5 words) and a simple "genre" '
        '(use one of: Fantasy, Comedy, Mystery, Horror, Sci-Fi, Adventure, Romance, Custom). '
        'Example: {"title":"Midnight Heist","genre":"Mystery"}'
    )
    text = call_completion(
        [{'role': 'system', 'content': system_prompt}, {'role': 'user', 'content': user_prompt}],
        max_tokens=60,
        temperature=0.8,
    )
    if text:
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and parsed.get('title') and parsed.get('genre'):
            return {'title': str(parsed['title']), 'genre': str(parsed['genre'])}
        current_app.logger.warning(f"[ai] non-JSON game meta: {text[:120]}")
    return dict(META_FALLBACK)
