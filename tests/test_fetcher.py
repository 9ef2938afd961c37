import httpx

from quickscan_agent.fetcher import MAX_TEXT_CHARS, WebClient, html_to_text


def _web(handler) -> WebClient:
    return WebClient(transport=httpx.MockTransport(handler))


def test_probe_2xx_is_reachable():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    result = _web(handler).probe("https://example.com")

    assert result.reachable
    assert result.error is None
    assert seen[0].method == "HEAD"
    assert "Mozilla/5.0" in seen[0].headers["user-agent"]


def test_probe_non_2xx_reports_status():
    result = _web(lambda request: httpx.Response(503)).probe("https://example.com")

    assert not result.reachable
    assert "503" in result.error


def test_probe_connection_failure():
    def handler(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    result = _web(handler).probe("https://nope.invalid")

    assert not result.reachable
    assert "does not exist or is unreachable" in result.error


def test_probe_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    result = _web(handler).probe("https://slow.example")

    assert not result.reachable
    assert "did not respond within 10 seconds" in result.error


def test_fetch_text_strips_markup():
    html = """
    <html><head><style>body { color: red; }</style><script>var x = "<b>";</script></head>
    <body><h1>Acme</h1>
        <p>We   build
        rockets.</p></body></html>
    """
    text = _web(lambda request: httpx.Response(200, text=html)).fetch_text("https://acme.example")

    assert text == "Acme We build rockets."


def test_fetch_text_truncates():
    html = "<p>" + "a" * (MAX_TEXT_CHARS + 500) + "</p>"
    text = _web(lambda request: httpx.Response(200, text=html)).fetch_text("https://acme.example")

    assert len(text) == MAX_TEXT_CHARS


def test_fetch_text_degrades_on_http_error():
    text = _web(lambda request: httpx.Response(500)).fetch_text("https://acme.example")

    assert text == "Website URL: https://acme.example"


def test_fetch_text_degrades_on_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert _web(handler).fetch_text("https://acme.example") == "Website URL: https://acme.example"


def test_fetch_text_empty_page():
    text = _web(lambda request: httpx.Response(200, text="<div></div>")).fetch_text("https://acme.example")

    assert text == "Website: https://acme.example"


def test_html_to_text_is_case_insensitive_for_blocks():
    assert html_to_text("<SCRIPT>alert(1)</SCRIPT>hello<STYLE>p{}</STYLE>") == "hello"
