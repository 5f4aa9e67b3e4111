import json
import re
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from taleon.models import AI_USERNAME
from taleon.services import ai

AI_PLAYER_NAMES = {AI_USERNAME, 'AI'}
SCORE_CATEGORIES = ('flow', 'creativity', 'vibe', 'immersion')
KEYBOARD_MASH = {'asd', 'qwe', 'zxc', 'dfg', 'ghj', 'jkl', 'dcx', 'acs'}

JUDGE_SYSTEM_PROMPT = (
    "You are a judge for a storytelling game. Decide WIN or LOSE.\n\n"
    "WIN if: Story has creativity, plot, characters, or effort\n"
    "LOSE if: Empty, gibberish, random codes, or meaningless\n\n"
    "Return ONLY this JSON format:\n"
    '{"verdict":"WIN","scores":{"flow":"3/5","creativity":"3/5","vibe":"3/5","immersion":"3/5"}}'
)


def uniform_scores(value: str) -> Dict[str, str]:
    return {k: value for k in SCORE_CATEGORIES}


def is_gibberish(text: Optional[str]) -> bool:
    """Cheap local check for keyboard-mash contributions."""
    if not text:
        return True
    clean = text.strip()
    if len(clean) < 3:
        return True
    if not re.search(r'[a-zA-Z]', clean):
        return True
    if re.fullmatch(r'[a-z]{3,5}', clean, re.IGNORECASE):
        if clean.lower() in KEYBOARD_MASH:
            return True
        if len(clean) <= 4 and not re.search(r'[aeiou]', clean, re.IGNORECASE):
            return True
    # aaa, ababab
    if re.fullmatch(r'([a-z])\1{2,}', clean, re.IGNORECASE):
        return True
    if re.fullmatch(r'(..)\1{2,}', clean, re.IGNORECASE):
        return True
    return False


def _entry_text(entry: Any) -> str:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        return str(entry.get('text') or entry.get('content') or '')
    return ''


def _is_human(entry: Any) -> bool:
    if isinstance(entry, dict):
        return (entry.get('player') or '') not in AI_PLAYER_NAMES
    return True


def parse_verdict(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Recover a ``{verdict, scores}`` object from a model reply.

    Tries the reply as-is, then the outermost ``{...}`` block, then that block
    with newlines flattened and trailing commas removed.
    """
    if not raw:
        return None

    def _try(txt: str) -> Optional[Dict[str, Any]]:
        try:
            parsed = json.loads(txt)
        except ValueError:
            return None
        if isinstance(parsed, dict) and parsed.get('verdict') and parsed.get('scores'):
            return parsed
        return None

    result = _try(raw)
    if result:
        return result

    match = re.search(r'\{.*\}', raw, re.DOTALL)
    block = match.group(0) if match else raw
    if match:
        result = _try(block)
        if result:
            return result

    cleaned = re.sub(r'(\r\n|\n|\r)', ' ', block)
    cleaned = re.sub(r',\s*}', '}', cleaned)
    cleaned = re.sub(r',\s*]', ']', cleaned)
    return _try(cleaned)


def fallback_verdict(human_text: str) -> Dict[str, Any]:
    human_text = human_text.strip()
    if not human_text:
        return {'verdict': 'LOSE', 'source': 'FALLBACK', 'scores': uniform_scores('1/5')}
    if len(human_text) < 20:
        return {'verdict': 'LOSE', 'source': 'FALLBACK', 'scores': uniform_scores('2/5')}
    return {'verdict': 'WIN', 'source': 'FALLBACK', 'scores': uniform_scores('3/5')}


def judge_story(story: Iterable[Any]) -> Dict[str, Any]:
    """Judge a story given as strings or ``{player, text}`` dicts.

    Returns a dict with ``verdict``, ``scores`` and ``source`` (HUMAN_FILTER,
    AI or FALLBACK).
    """
    story: List[Any] = list(story or [])
    human_texts = [_entry_text(s) for s in story if _is_human(s)]
    human_joined = '\n'.join(human_texts)
    complete_story = '\n'.join(_entry_text(s) for s in story)

    current_app.logger.info(
        f"[judge] entries={len(story)} human={len(human_texts)} story_len={len(complete_story)}"
    )

    if all(is_gibberish(t) for t in human_texts):
        current_app.logger.info("[judge] all human inputs are gibberish -> LOSE")
        return {'verdict': 'LOSE', 'source': 'HUMAN_FILTER', 'scores': uniform_scores('1/5')}

    messages = [
        {'role': 'system', 'content': JUDGE_SYSTEM_PROMPT},
        {
            'role': 'user',
            'content': (
                "Judge this story:\n\n" + complete_story + "\n\n"
                "Is it creative and engaging? Return WIN or LOSE with scores."
            ),
        },
    ]
    raw = ai.call_completion(messages, max_tokens=200, temperature=0.5)
    result = parse_verdict(raw)
    if result:
        current_app.logger.info(f"[judge] parsed verdict={result['verdict']}")
        return {**result, 'source': 'AI'}

    current_app.logger.warning("[judge] no usable AI verdict, using fallback")
    return fallback_verdict(human_joined)
