import pytest

from taleon.services.games import judgement
from taleon.services.games.judgement import is_gibberish, judge_story, parse_verdict

GOOD_REPLY = '{"verdict":"WIN","scores":{"flow":"4/5","creativity":"5/5","vibe":"4/5","immersion":"3/5"}}'


@pytest.fixture()
def ai_reply(monkeypatch):
    """Replace the completion call with a canned reply and record the calls."""
    calls = []

    def _set(reply):
        def fake(messages, max_tokens=200, temperature=0.9):
            calls.append(messages)
            return reply
        monkeypatch.setattr('taleon.services.ai.call_completion', fake)
        return calls
    return _set


@pytest.mark.parametrize('text,expected', [
    ('', True),
    ('qq', True),
    ('asd', True),
    ('1234 5678', True),
    ('aaaaa', True),
    ('abababab', True),
    ('bcdf', True),
    ('The knight rode north.', False),
    ('hello', False),
])
def test_is_gibberish(text, expected):
    assert is_gibberish(text) is expected


def test_gibberish_story_never_reaches_ai(flask_app, ai_reply):
    calls = ai_reply(GOOD_REPLY)
    with flask_app.app_context():
        result = judge_story(['asd', 'qq'])
    assert result['verdict'] == 'LOSE'
    assert result['source'] == 'HUMAN_FILTER'
    assert set(result['scores'].values()) == {'1/5'}
    assert calls == []


def test_ai_entries_do_not_count_as_human(flask_app, ai_reply):
    calls = ai_reply(GOOD_REPLY)
    story = [
        {'player': 'Alice', 'text': 'zzz'},
        {'player': 'AI_Buddy', 'text': 'A long and thoughtful continuation of the tale.'},
    ]
    with flask_app.app_context():
        assert judge_story(story)['source'] == 'HUMAN_FILTER'
    assert calls == []


def test_well_formed_reply(flask_app, ai_reply):
    ai_reply(GOOD_REPLY)
    with flask_app.app_context():
        result = judge_story(['The knight rode north to find the lost crown.'])
    assert result['verdict'] == 'WIN'
    assert result['source'] == 'AI'
    assert result['scores']['creativity'] == '5/5'


def test_parse_verdict_recovers_wrapped_json():
    raw = 'Here is my verdict:\n' + GOOD_REPLY + '\nHope that helps!'
    assert parse_verdict(raw)['verdict'] == 'WIN'


def test_parse_verdict_recovers_trailing_commas():
    raw = '{"verdict": "LOSE",\n "scores": {"flow": "2/5", "creativity": "1/5",\n "vibe": "2/5", "immersion": "1/5",},}'
    parsed = parse_verdict(raw)
    assert parsed['verdict'] == 'LOSE'
    assert parsed['scores']['immersion'] == '1/5'


def test_parse_verdict_gives_up():
    assert parse_verdict(None) is None
    assert parse_verdict('no json here') is None
    assert parse_verdict('{"verdict": "WIN"}') is None


@pytest.mark.parametrize('texts,verdict,score', [
    (['Short but real'], 'LOSE', '2/5'),
    (['A traveller found a door in the old oak tree.'], 'WIN', '3/5'),
])
def test_fallback_when_ai_unusable(flask_app, ai_reply, texts, verdict, score):
    ai_reply('I cannot judge this.')
    with flask_app.app_context():
        result = judge_story(texts)
    assert result['source'] == 'FALLBACK'
    assert result['verdict'] == verdict
    assert set(result['scores'].values()) == {score}


def test_fallback_empty_text():
    result = judgement.fallback_verdict('   ')
    assert result['verdict'] == 'LOSE'
    assert result['scores']['flow'] == '1/5'


def test_judgement_endpoint_saves_verdict(flask_app, started_game, ai_reply):
    alice, bob, code, started = started_game()
    alice.post('/game/turn', json={'room_code': code, 'text': 'The lighthouse keeper saw a ship.'})
    ai_reply(GOOD_REPLY)

    res = bob.post('/game/judgement', json={'room_code': code})
    assert res.status_code == 200
    assert res.get_json()['verdict'] == 'WIN'

    game = alice.get(f"/game/{started['game_id']}").get_json()
    assert game['verdict'] == 'WIN'
    assert game['status'] == 'judged'
    assert game['is_active'] is False
    assert game['scores']['flow'] == '4/5'


def test_judgement_endpoint_with_raw_story(player):
    alice = player('Alice')
    res = alice.post('/game/judgement', json={'story': ['asd']})
    assert res.get_json()['source'] == 'HUMAN_FILTER'
    assert alice.post('/game/judgement', json={}).status_code == 400


def test_roast_skips_ai_player(player, ai_reply):
    alice = player('Alice')
    ai_reply('You write like a sleepy goose.')
    res = alice.post('/game/roast', json={
        'players': ['Alice', {'username': 'AI_Buddy'}, {'name': 'Bob'}],
        'story': [{'player': 'Alice', 'text': 'It was dark.'}],
        'result': 'LOSE',
    })
    roasts = res.get_json()['roasts']
    assert [r['name'] for r in roasts] == ['Alice', 'Bob']
    assert roasts[0]['roast'] == 'You write like a sleepy goose.'


def test_roast_fallback_without_ai(player):
    alice = player('Alice')
    res = alice.post('/game/roast', json={'players': ['Alice'], 'story': []})
    assert res.get_json()['roasts'] == [{'name': 'Alice', 'roast': 'No roast available.'}]


def test_archive_counts_verdicts(started_game, ai_reply):
    alice, bob, code, started = started_game()
    alice.post('/game/turn', json={'room_code': code, 'text': 'The lighthouse keeper saw a ship.'})
    ai_reply(GOOD_REPLY)
    alice.post('/game/judgement', json={'room_code': code})

    data = bob.get('/game/archive').get_json()
    assert data['pagination']['total_games'] == 1
    counts = data['filters']['verdict_counts']
    assert counts['ALL'] == 1
    assert counts['WIN'] == 1
    assert counts['PENDING'] == 0
    entry = data['archives'][0]
    assert entry['id'] == started['game_id']
    assert entry['story'][0] == {'player': 'Storyteller A', 'text': 'The lighthouse keeper saw a ship.'}
