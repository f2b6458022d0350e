"""Tests for the browser tracking snippet."""

from site_analytics.script import render_tracker_js, tracking_script


def _function(source: str, name: str) -> str:
    """Body of a top-level tracker function, up to the next function."""
    start = source.index(f"function {name}(")
    end = source.index("\n  function ", start + 1)
    return source[start:end]


class TestRenderTrackerJs:
    """Test render_tracker_js."""

    def test_binds_endpoint_and_debug_flag(self):
        source = render_tracker_js("https://example.com/api/analytics/", debug=True)

        assert 'var api="https://example.com/api/analytics",debug=true;' in source
        assert "__API_ENDPOINT__" not in source
        assert "__DEBUG__" not in source

    def test_endpoint_is_json_escaped(self):
        source = render_tracker_js('/api/"x"')
        assert 'var api="/api/\\"x\\""' in source

    def test_each_delivery_starts_its_own_request(self):
        """A request that never settles must not hold back later deliveries."""
        source = render_tracker_js()
        post = _function(source, "post")

        assert post.splitlines()[1].strip().startswith("return fetch(api+path")
        assert ".then(function(){" not in post
        assert "chain" not in source

    def test_queued_records_keep_their_creation_time(self):
        record = _function(render_tracker_js(), "record")

        assert record.index("body.timestamp=body.timestamp||now()") < record.index('pending.push(["record"')

    def test_queued_page_views_and_events_keep_their_creation_time(self):
        source = render_tracker_js()

        assert 'pending.push(["pageview",[page,title,now()]])' in _function(source, "trackPageView")
        assert "metadata,now()]]" in _function(source, "trackEvent")

    def test_unload_uses_send_beacon(self):
        assert 'n.sendBeacon(api+"/pageview"' in render_tracker_js()


class TestTrackingScript:
    def test_wraps_in_script_tag(self):
        html = tracking_script("/stats-api")

        assert html.startswith("<script>\n(function(){")
        assert html.endswith("})();\n</script>")
        assert 'var api="/stats-api"' in html
