import pytest

NS = '/ws'


def _received(sio):
    """Drain a test client's queue into {event_name: [payload, ...]}."""
    events = {}
    for pkt in sio.get_received(NS):
        events.setdefault(pkt['name'], []).append(pkt['args'][0] if pkt['args'] else None)
    return events


@pytest.fixture()
def match(engine, make_user, sio_factory):
    """An active session with both participants connected and subscribed."""
    alice_id, alice_token = make_user('alice')
    bob_id, bob_token = make_user('bob')
    created = engine.create_session(alice_id)
    engine.join_session(created['code'], bob_id)
    alice = sio_factory(alice_token)
    bob = sio_factory(bob_token)
    session_id = created['sessionId']
    alice.emit('join_session', {'sessionId': session_id}, namespace=NS)
    bob.emit('join_session', {'sessionId': session_id}, namespace=NS)
    alice.get_received(NS)
    bob.get_received(NS)
    return {
        'session_id': session_id,
        'alice': alice, 'alice_id': alice_id, 'alice_token': alice_token,
        'bob': bob, 'bob_id': bob_id, 'bob_token': bob_token,
    }


def test_connect_resolves_identity(sio_factory, make_user):
    user_id, token = make_user('alice')
    authed = sio_factory(token)
    assert authed.is_connected(NS)
    assert _received(authed)['connected'] == [{'id': user_id, 'displayName': 'alice'}]

    anonymous = sio_factory()
    assert _received(anonymous)['connected'][0]['id'] == 'anonymous'

    forged = sio_factory('not-a-real-token')
    assert _received(forged)['connected'][0]['id'] == 'anonymous'


def test_join_pushes_state_and_notifies_others(engine, make_user, sio_factory):
    alice_id, alice_token = make_user('alice')
    bob_id, bob_token = make_user('bob')
    created = engine.create_session(alice_id)
    alice = sio_factory(alice_token)
    alice.get_received(NS)
    alice.emit('join_session', {'sessionId': created['sessionId']}, namespace=NS)
    state = _received(alice)['session_state'][0]
    assert state['status'] == 'waiting'

    engine.join_session(created['code'], bob_id)
    bob = sio_factory(bob_token)
    bob.get_received(NS)
    bob.emit('join_session', {'sessionId': created['sessionId']}, namespace=NS)
    assert _received(bob)['session_state'][0]['status'] == 'active'
    assert _received(alice)['participant_joined'] == [{'id': bob_id, 'displayName': 'bob'}]


def test_join_unknown_session_errors_to_caller(sio_client):
    sio_client.get_received(NS)
    sio_client.emit('join_session', {'sessionId': 'missing'}, namespace=NS)
    assert _received(sio_client)['error'][0]['code'] == 'not_found'
    sio_client.emit('join_session', {}, namespace=NS)
    assert _received(sio_client)['error'][0]['code'] == 'bad_request'


def test_move_broadcasts_full_state_to_all(match):
    alice, bob = match['alice'], match['bob']
    alice.emit('make_move', {'sessionId': match['session_id'], 'cellIndex': 4}, namespace=NS)
    for sio in (alice, bob):
        state = _received(sio)['session_state'][0]
        assert state['board'][4] == 'X'
        assert state['currentTurn'] == 'O'


def test_rejected_move_only_reaches_sender(match):
    alice, bob = match['alice'], match['bob']
    bob.emit('make_move', {'sessionId': match['session_id'], 'cellIndex': 0}, namespace=NS)
    assert _received(bob)['error'][0]['code'] == 'not_your_turn'
    assert _received(alice) == {}


def test_spectator_cannot_move(match, sio_factory):
    viewer = sio_factory()
    viewer.emit('join_session', {'sessionId': match['session_id']}, namespace=NS)
    viewer.get_received(NS)
    match['alice'].get_received(NS)
    viewer.emit('make_move', {'sessionId': match['session_id'], 'cellIndex': '0'}, namespace=NS)
    assert _received(viewer)['error'][0]['code'] == 'not_a_participant'
    assert 'session_state' not in _received(match['alice'])


def test_winning_move_ends_session_for_everyone(match):
    alice, bob, sid = match['alice'], match['bob'], match['session_id']
    for sio, cell in [(alice, 0), (bob, 3), (alice, 1), (bob, 4), (alice, 2)]:
        sio.emit('make_move', {'sessionId': sid, 'cellIndex': cell}, namespace=NS)
    for sio in (alice, bob):
        events = _received(sio)
        assert len(events['session_state']) == 5
        ended = events['session_ended'][0]
        assert ended['winner'] == 'X'
        assert ended['status'] == 'finished'
        assert ended == events['session_state'][-1]


def test_leave_notifies_remaining(match):
    match['bob'].emit('leave_session', {'sessionId': match['session_id']}, namespace=NS)
    assert _received(match['alice'])['participant_left'] == [{'id': match['bob_id'], 'displayName': 'bob'}]
    # No longer subscribed: bob does not get later moves
    match['bob'].get_received(NS)
    match['alice'].emit('make_move', {'sessionId': match['session_id'], 'cellIndex': 4}, namespace=NS)
    assert 'session_state' not in _received(match['bob'])


def test_disconnect_arms_grace_and_reconnect_cancels(match, gateway, sio_factory):
    sid = match['session_id']
    match['bob'].disconnect(namespace=NS)
    notice = _received(match['alice'])['participant_disconnected'][0]
    assert notice == {'id': match['bob_id'], 'displayName': 'bob', 'timeoutSeconds': 30}
    assert gateway.pending_forfeit(match['bob_id'], sid) is not None

    bob_again = sio_factory(match['bob_token'])
    bob_again.emit('join_session', {'sessionId': sid}, namespace=NS)
    events = _received(match['alice'])
    assert events['participant_reconnected'] == [{'id': match['bob_id'], 'displayName': 'bob'}]
    assert gateway.pending_forfeit(match['bob_id'], sid) is None
    # A timer that fires after the reconnect changes nothing
    assert gateway.expire_grace(match['bob_id'], sid) is None
    assert _received(bob_again)['session_state'][0]['status'] == 'active'


def test_grace_expiry_forfeits_to_opponent(match, gateway):
    sid = match['session_id']
    match['bob'].disconnect(namespace=NS)
    match['alice'].get_received(NS)
    deadline = gateway.pending_forfeit(match['bob_id'], sid)

    # A stale timer (older deadline) is ignored
    assert gateway.expire_grace(match['bob_id'], sid, deadline - 1) is None

    projection = gateway.expire_grace(match['bob_id'], sid, deadline)
    assert projection['winner'] == 'X'
    assert projection['finishReason'] == 'forfeit'
    events = _received(match['alice'])
    assert events['session_ended'][0]['status'] == 'finished'


def test_disconnect_from_waiting_session_has_no_grace(engine, make_user, sio_factory, gateway):
    alice_id, alice_token = make_user('alice')
    created = engine.create_session(alice_id)
    alice = sio_factory(alice_token)
    alice.emit('join_session', {'sessionId': created['sessionId']}, namespace=NS)
    alice.disconnect(namespace=NS)
    assert gateway.pending_forfeit(alice_id, created['sessionId']) is None


def test_second_tab_keeps_participant_present(match, sio_factory, gateway):
    sid = match['session_id']
    second = sio_factory(match['bob_token'])
    second.emit('join_session', {'sessionId': sid}, namespace=NS)
    match['alice'].get_received(NS)
    match['bob'].disconnect(namespace=NS)
    assert 'participant_disconnected' not in _received(match['alice'])
    assert gateway.pending_forfeit(match['bob_id'], sid) is None


def test_broadcast_survives_failing_recipient(match, gateway, monkeypatch):
    sent = []
    real_emit = gateway.socketio.emit
    alice_sid = gateway.presence.connections_for(match['alice_id'], match['session_id'])[0].connection_id

    def flaky_emit(event, *args, **kwargs):
        if kwargs.get('to') == alice_sid:
            raise ConnectionResetError('socket gone')
        sent.append(kwargs.get('to'))
        return real_emit(event, *args, **kwargs)

    monkeypatch.setattr(gateway.socketio, 'emit', flaky_emit)
    gateway.apply_move(match['alice_id'], match['session_id'], 4)
    assert len(sent) == 1
    assert _received(match['bob'])['session_state'][0]['board'][4] == 'X'


def test_final_move_reaches_everyone_when_stats_fail(match, monkeypatch):
    from tictac import players

    def fail(state):
        raise RuntimeError('stats table locked')

    monkeypatch.setattr(players, 'record_result', fail)
    alice, bob, sid = match['alice'], match['bob'], match['session_id']
    for sio, cell in [(alice, 0), (bob, 3), (alice, 1), (bob, 4), (alice, 2)]:
        sio.emit('make_move', {'sessionId': sid, 'cellIndex': cell}, namespace=NS)
    for sio in (alice, bob):
        events = _received(sio)
        assert 'error' not in events
        assert events['session_ended'][0]['winner'] == 'X'


def test_anonymous_viewer_leaving_does_not_start_forfeit(engine, make_user, sio_factory, gateway):
    bob_id, bob_token = make_user('bob')
    created = engine.create_session('anonymous')
    engine.join_session(created['code'], bob_id)
    sid = created['sessionId']
    bob = sio_factory(bob_token)
    bob.emit('join_session', {'sessionId': sid}, namespace=NS)
    viewer = sio_factory()
    viewer.emit('join_session', {'sessionId': sid}, namespace=NS)
    bob.get_received(NS)

    viewer.disconnect(namespace=NS)
    assert _received(bob)['participant_disconnected'][0]['timeoutSeconds'] == 0
    assert gateway.pending_forfeit('anonymous', sid) is None
    assert engine.get_projection(sid)['status'] == 'active'
