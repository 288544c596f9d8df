import requests

from raffle.tools import enter


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")


def test_enters_with_fee_plus_one(monkeypatch, account, capsys):
    posted = {}

    def fake_get(url, timeout):
        assert url == "http://raffle.local/api/raffle/status"
        return FakeResponse(200, {"entranceFeeWei": 100})

    def fake_post(url, json, timeout):
        posted["url"] = url
        posted["json"] = json
        return FakeResponse(200, {"status": "entered", "round_id": 1, "player_count": 1})

    monkeypatch.setattr(enter.requests, "get", fake_get)
    monkeypatch.setattr(enter.requests, "post", fake_post)

    code = enter.main(["--api-url", "http://raffle.local/", "--player", account])

    assert code == 0
    assert posted["url"] == "http://raffle.local/api/raffle/enter"
    assert posted["json"] == {"player": account, "amount_wei": 101}
    assert "Entered round 1" in capsys.readouterr().out


def test_generates_player_when_missing(monkeypatch):
    posted = {}

    def fake_post(url, json, timeout):
        posted.update(json)
        return FakeResponse(200, {"status": "entered", "round_id": 3, "player_count": 2})

    monkeypatch.setattr(enter.requests, "post", fake_post)

    assert enter.main(["--amount-wei", "5"]) == 0
    assert posted["player"].startswith("0x")
    assert posted["amount_wei"] == 5


def test_rejected_entry_returns_error(monkeypatch, account, capsys):
    def fake_post(url, json, timeout):
        return FakeResponse(409, {"detail": {"error": "NotOpen"}})

    monkeypatch.setattr(enter.requests, "post", fake_post)

    assert enter.main(["--player", account, "--amount-wei", "100"]) == 1
    assert "NotOpen" in capsys.readouterr().err


def test_invalid_player_is_refused(capsys):
    assert enter.main(["--player", "bogus"]) == 1
    assert "invalid address" in capsys.readouterr().err
