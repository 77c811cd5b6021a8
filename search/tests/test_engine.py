import json
from unittest.mock import Mock

import requests
from django.test import SimpleTestCase, override_settings

from core.errors import EngineMisconfigured, EngineQueryRejected, EngineUnreachable
from search.engine import SearchForwarder, normalize_hit


def _response(status=200, payload=None, text=None):
    resp = requests.Response()
    resp.status_code = status
    resp.encoding = "utf-8"
    resp._content = (text if text is not None else json.dumps(payload or {})).encode()
    return resp


ES_HITS = {
    "took": 3,
    "hits": {
        "total": {"value": 2, "relation": "eq"},
        "hits": [
            {"_index": "leaks-2023", "_id": "a1", "_score": 2.5, "_source": {"email": "x@example.com"}},
            {"_index": "leaks-2024", "_id": "b2", "_score": 1.0, "_source": {"email": "y@example.com"}},
        ],
    },
}


def _forwarder(*responses, **kwargs):
    session = Mock(spec=requests.Session)
    session.post.side_effect = list(responses)
    return SearchForwarder("https://es.internal:9200/", api_key="c2VjcmV0", session=session, **kwargs), session


class SearchForwarderTests(SimpleTestCase):
    def test_primary_strategy_result_is_normalized(self):
        forwarder, session = _forwarder(_response(200, ES_HITS), page_size=50)

        result = forwarder.forward("x@example.com")

        self.assertEqual(result.total, 2)
        self.assertEqual(result.strategy, "query_string")
        self.assertEqual(
            result.hits[0].as_dict(),
            {"id": "a1", "index": "leaks-2023", "score": 2.5, "data": {"email": "x@example.com"}},
        )
        self.assertEqual(session.post.call_count, 1)
        call = session.post.call_args
        self.assertEqual(call.args[0], "https://es.internal:9200/_all/_search")
        self.assertEqual(call.kwargs["json"]["query"]["query_string"]["query"], "*x@example.com*")
        self.assertEqual(call.kwargs["json"]["size"], 50)
        self.assertEqual(call.kwargs["headers"]["Authorization"], "ApiKey c2VjcmV0")

    def test_fallback_runs_exactly_once_after_rejection(self):
        forwarder, session = _forwarder(_response(400, {"error": "parse_exception"}), _response(200, ES_HITS))

        result = forwarder.forward("john doe", index="people")

        self.assertEqual(result.strategy, "phrase_prefix")
        self.assertEqual(result.attempts, ["query_string", "phrase_prefix"])
        self.assertEqual(session.post.call_count, 2)
        fallback = session.post.call_args
        self.assertEqual(fallback.args[0], "https://es.internal:9200/people/_search")
        self.assertEqual(
            fallback.kwargs["json"]["query"]["multi_match"],
            {"query": "john doe", "fields": ["*"], "type": "phrase_prefix"},
        )

    def test_both_strategies_rejected(self):
        forwarder, session = _forwarder(_response(400), _response(500, text="oops"))
        with self.assertRaises(EngineQueryRejected):
            forwarder.forward("x")
        self.assertEqual(session.post.call_count, 2)

    def test_unreachable_engine(self):
        forwarder, session = _forwarder(requests.ConnectionError("refused"), requests.Timeout("slow"))
        with self.assertRaises(EngineUnreachable):
            forwarder.forward("x")
        self.assertEqual(session.post.call_count, 2)

    def test_non_json_answer_moves_to_fallback(self):
        forwarder, _ = _forwarder(_response(200, text="<html>proxy</html>"), _response(200, ES_HITS))
        self.assertEqual(forwarder.forward("x").strategy, "phrase_prefix")

    def test_missing_total_falls_back_to_hit_count(self):
        body = {"hits": {"hits": ES_HITS["hits"]["hits"]}}
        forwarder, _ = _forwarder(_response(200, body))
        self.assertEqual(forwarder.forward("x").total, 2)

        forwarder, _ = _forwarder(_response(200, {"hits": {"total": 7, "hits": []}}))
        result = forwarder.forward("x")
        self.assertEqual((result.total, result.hits), (7, []))

    @override_settings(ELASTICSEARCH_URL="")
    def test_unconfigured_engine(self):
        forwarder = SearchForwarder.from_settings(session=Mock(spec=requests.Session))
        with self.assertRaises(EngineMisconfigured):
            forwarder.forward("x")
        forwarder.session.post.assert_not_called()

    def test_normalize_hit_tolerates_missing_fields(self):
        hit = normalize_hit({"_id": 5})
        self.assertEqual(hit.as_dict(), {"id": "5", "index": "", "score": None, "data": {}})

    def test_index_stays_inside_one_path_segment(self):
        forwarder, session = _forwarder(_response(200, ES_HITS))
        forwarder.forward("x", index="_forcemerge?max_num_segments=1#")
        self.assertEqual(
            session.post.call_args.args[0],
            "https://es.internal:9200/_forcemerge%3Fmax_num_segments%3D1%23/_search",
        )

    def test_index_patterns_and_lists_are_kept(self):
        forwarder = SearchForwarder("https://es.internal:9200")
        self.assertEqual(forwarder.search_url("leaks-*,people"), "https://es.internal:9200/leaks-*,people/_search")
