"""
Reddit client tests: retry behaviour, token refresh, listing pagination
and comment tree flattening.

Run with: pytest tests/test_reddit_client.py -v
"""

from unittest.mock import Mock, patch

import pytest
import requests

from threadlens.errors import ConfigurationError
from threadlens.reddit_client import RedditClient, is_removed_body


def _response(status_code=200, json_data=None, headers=None):
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = json_data if json_data is not None else {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    else:
        response.raise_for_status.return_value = None
    return response


def _listing(posts, after=None):
    return {"data": {"children": [{"kind": "t3", "data": p} for p in posts], "after": after}}


def _comment(comment_id, created_utc=100, replies=None, **extra):
    data = {
        "id": comment_id,
        "link_id": "t3_p1",
        "created_utc": created_utc,
        "body": f"comment {comment_id}",
        "author": "someone",
        "score": 1,
        "replies": {"data": {"children": replies}} if replies else "",
    }
    data.update(extra)
    return {"kind": "t1", "data": data}


@pytest.fixture
def client():
    client = RedditClient(
        client_id="id", client_secret="secret", refresh_token="refresh",
        user_agent="threadlens-tests", subreddit="FACEITcom", max_retries=3,
    )
    client._access_token = "token"
    client._token_expires_at = float("inf")
    return client


class TestConstruction:
    """Tests for credential checks."""

    def test_missing_credentials(self):
        """Missing OAuth credentials fail at construction."""
        with pytest.raises(ConfigurationError):
            RedditClient(None, "secret", "refresh", "ua", "FACEITcom")


class TestRetry:
    """Tests for _request_with_retry()."""

    @patch("threadlens.reddit_client.time.sleep")
    def test_retries_on_server_error(self, mock_sleep, client):
        """5xx responses are retried and the eventual success returned."""
        client.session.get = Mock(side_effect=[
            _response(503),
            _response(200, {"ok": True}),
        ])

        assert client._get("/r/FACEITcom/new") == {"ok": True}
        assert mock_sleep.call_count == 1

    @patch("threadlens.reddit_client.time.sleep")
    def test_429_honours_retry_after(self, mock_sleep, client):
        """The Retry-After header sets the base delay."""
        client.session.get = Mock(side_effect=[
            _response(429, headers={"Retry-After": "20"}),
            _response(200, {"ok": True}),
        ])

        client._get("/r/FACEITcom/new")

        delay = mock_sleep.call_args.args[0]
        assert 20 <= delay <= 30

    @patch("threadlens.reddit_client.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep, client):
        """Persistent 5xx responses raise after the last retry."""
        client.session.get = Mock(return_value=_response(500))

        with pytest.raises(requests.exceptions.HTTPError):
            client._get("/r/FACEITcom/new")
        assert client.session.get.call_count == 4
        assert mock_sleep.call_count == 3

    @patch("threadlens.reddit_client.time.sleep")
    def test_client_errors_not_retried(self, mock_sleep, client):
        """A 404 raises immediately."""
        client.session.get = Mock(return_value=_response(404))

        with pytest.raises(requests.exceptions.HTTPError):
            client._get("/by_id/t3_gone")
        assert client.session.get.call_count == 1
        mock_sleep.assert_not_called()

    @patch("threadlens.reddit_client.time.sleep")
    def test_connection_errors_retried(self, mock_sleep, client):
        """Connection errors back off and retry."""
        client.session.get = Mock(side_effect=[
            requests.exceptions.ConnectionError("reset"),
            _response(200, {"ok": True}),
        ])

        assert client._get("/x") == {"ok": True}
        assert mock_sleep.call_count == 1

    @patch("threadlens.reddit_client.time.sleep")
    def test_401_refreshes_token_once(self, mock_sleep, client):
        """An expired token is refreshed and the request repeated."""
        client.session.get = Mock(side_effect=[
            _response(401),
            _response(200, {"ok": True}),
        ])
        client.session.post = Mock(return_value=_response(200, {"access_token": "new", "expires_in": 3600}))

        assert client._get("/x") == {"ok": True}
        assert client.session.post.call_count == 1
        assert client.session.headers["Authorization"] == "Bearer new"
        mock_sleep.assert_not_called()

    def test_parse_retry_after(self):
        """Integer headers are used directly with a floor of one second."""
        assert RedditClient._parse_retry_after("30") == 30
        assert RedditClient._parse_retry_after("0") == 1
        assert RedditClient._parse_retry_after("not a date") == 10


class TestListings:
    """Tests for the /new listing and comment tree."""

    def test_iter_new_posts_paginates(self, client):
        """Pages are followed through the 'after' cursor."""
        client._get = Mock(side_effect=[
            _listing([{"id": "a", "created_utc": 300}, {"id": "b", "created_utc": 200}], after="t3_b"),
            _listing([{"id": "c", "created_utc": 100}]),
        ])

        ids = [p["id"] for p in client.iter_new_posts()]

        assert ids == ["a", "b", "c"]
        assert client._get.call_args_list[1].kwargs["params"]["after"] == "t3_b"

    def test_iter_new_posts_stops_before_cutoff(self, client):
        """The walk ends at the first post older than the cutoff."""
        client._get = Mock(side_effect=[
            _listing([{"id": "a", "created_utc": 300}, {"id": "b", "created_utc": 50}], after="t3_b"),
        ])

        ids = [p["id"] for p in client.iter_new_posts(stop_before_utc=100)]

        assert ids == ["a"]
        assert client._get.call_count == 1

    def test_iter_new_posts_max_posts(self, client):
        """max_posts caps the number yielded."""
        client._get = Mock(return_value=_listing(
            [{"id": str(i), "created_utc": 1000 - i} for i in range(5)], after="t3_4",
        ))

        assert len(list(client.iter_new_posts(max_posts=3))) == 3

    def test_fetch_replies_flattens_tree(self, client):
        """Nested comments are returned depth-first; 'more' stubs are skipped."""
        tree = [
            {"data": {"children": []}},
            {"data": {"children": [
                _comment("c1", replies=[_comment("c1a"), {"kind": "more", "data": {"children": ["x"]}}]),
                _comment("c2"),
            ]}},
        ]
        client._get = Mock(return_value=tree)

        replies = client.fetch_replies("p1")

        assert [r["id"] for r in replies] == ["c1", "c1a", "c2"]

    def test_fetch_replies_respects_limit(self, client):
        """No more than `limit` comments come back."""
        tree = [{}, {"data": {"children": [_comment(f"c{i}") for i in range(10)]}}]
        client._get = Mock(return_value=tree)

        assert len(client.fetch_replies("p1", limit=4)) == 4

    def test_fetch_moderators(self, client):
        """Moderator names are read from the about/moderators listing."""
        client._get = Mock(return_value={"data": {"children": [{"name": "Mod_A"}, {"name": "Mod_B"}]}})
        assert client.fetch_moderators() == ["Mod_A", "Mod_B"]


class TestParsing:
    """Tests for raw data to model parsing."""

    def test_parse_post(self):
        """selftext becomes body and created_utc an int."""
        post = RedditClient.parse_post({
            "id": "abc", "created_utc": 1700000000.0, "title": "Help",
            "selftext": "body text", "author": "u1", "score": 5, "upvote_ratio": 0.9,
        })
        assert post.created_utc == 1700000000
        assert post.body == "body text"
        assert post.upvote_ratio == 0.9

    def test_parse_reply_takes_post_id_from_link(self):
        """Without an explicit post id the link_id prefix is stripped."""
        reply = RedditClient.parse_reply(_comment("c1", distinguished="moderator")["data"])
        assert reply.post_id == "p1"
        assert reply.distinguished == "moderator"

    def test_parse_post_missing_id(self):
        """Entries without required fields raise."""
        with pytest.raises(KeyError):
            RedditClient.parse_post({"created_utc": 1})

    def test_removed_bodies(self):
        """Deleted, removed and empty bodies count as removed."""
        assert is_removed_body("[deleted]")
        assert is_removed_body(" [removed] ")
        assert is_removed_body("")
        assert not is_removed_body("fine")
