import logging

from rest_framework.response import Response

from billing.auth import presented_key
from core.views import BrokerAPIView, cid
from .engine import SearchForwarder
from .metering import record_usage
from .quota import authorize_search
from .ratelimit import SearchRateThrottle, client_identity
from .serializers import SearchPayload

logger = logging.getLogger(__name__)


class SearchView(BrokerAPIView):
    """
    POST {"query": "...", "index": "optional"}
    200 -> {"success": true, "results": [{id, index, score, data}], "total", "remaining"}

    Guard chain: rate limit -> principal -> active key -> expiry -> quota.
    Quota is only charged once the engine has answered.
    """
    throttle_classes = [SearchRateThrottle]

    def post(self, request):
        corr = cid(request)
        key = authorize_search(request.user, presented=presented_key(request))

        s = SearchPayload(data=request.data)
        s.is_valid(raise_exception=True)
        query = s.validated_data["query"]
        index = s.validated_data.get("index")

        logger.info(
            "search: start cid=%s user=%s key=%s index=%s query_len=%d ip=%s",
            corr, key.owner_id, key.key_prefix, index or "_all", len(query), client_identity(request),
        )

        result = SearchForwarder.from_settings().forward(query, index)
        remaining = record_usage(key, query, len(result.hits))

        logger.info(
            "search: ok cid=%s user=%s strategy=%s hits=%d total=%d remaining=%d",
            corr, key.owner_id, result.strategy, len(result.hits), result.total, remaining,
        )
        return Response({
            "success": True,
            "results": [h.as_dict() for h in result.hits],
            "total": result.total,
            "remaining": remaining,
        })
