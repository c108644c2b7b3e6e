"""Tests for player-script selection, transformation, and output parsing."""

from pahe_gateway.stream.script_sandbox import (
    ScriptSandbox,
    find_candidate_script,
    parse_source_from_output,
    transform_script,
)


def test_first_eval_script_is_selected():
    html = """
    <html><head><script src="/player.js"></script></head><body>
    <script>var analytics = 1;</script>
    <script>eval(function(p,a,c,k,e,d){return p}('x',1,1,''.split('|')))</script>
    <script>eval("later")</script>
    </body></html>
    """
    assert find_candidate_script(html).startswith("eval(function(p,a,c,k,e,d)")


def test_source_assignment_script_is_selected():
    html = "<script>const x=1;</script><script>var source='https://c.example/v.m3u8';</script>"
    assert find_candidate_script(html) == "var source='https://c.example/v.m3u8';"


def test_no_matching_script_yields_empty_result():
    assert find_candidate_script("<script>var source='x.mp4';</script>") == ""
    assert find_candidate_script("") == ""


def test_transform_rewrites_dom_and_eval_identifiers():
    script = "window.x=document.querySelector('video');eval(payload);myeval(y)"
    assert transform_script(script) == "globalThis.x=process.exit('video');console.log(payload);myeval(y)"


def test_assignment_line_yields_exact_url():
    assert parse_source_from_output("var source = 'https://cdn.example/x/y.m3u8';") == "https://cdn.example/x/y.m3u8"


def test_assignment_beats_earlier_bare_url():
    output = "\n".join(
        [
            "preload('https://ads.example/promo.m3u8')",
            "const source=\"https://cdn.example/real/uwu.m3u8\";",
        ]
    )
    assert parse_source_from_output(output) == "https://cdn.example/real/uwu.m3u8"


def test_bare_url_fallback_and_no_match():
    assert parse_source_from_output("player.src('https://cdn.example/a/b.m3u8')") == "https://cdn.example/a/b.m3u8"
    assert parse_source_from_output("nothing to see\nhttps://cdn.example/v.mp4") == ""


async def test_extract_without_candidate_never_runs_a_process(monkeypatch):
    sandbox = ScriptSandbox()

    def fail(script):
        raise AssertionError("evaluate should not be called")

    monkeypatch.setattr(sandbox, "evaluate", fail)
    assert await sandbox.extract("<p>no scripts here</p>") == ""


async def test_extract_parses_captured_output(monkeypatch):
    sandbox = ScriptSandbox()
    seen = []

    def fake_evaluate(script):
        seen.append(script)
        return "var source='https://cdn.example/x/y.m3u8';"

    monkeypatch.setattr(sandbox, "evaluate", fake_evaluate)
    url = await sandbox.extract("<script>eval(document.cookie)</script>")

    assert url == "https://cdn.example/x/y.m3u8"
    assert seen == ["console.log(process.cookie)"]


def test_evaluate_runs_script_in_child_process():
    sandbox = ScriptSandbox(timeout=10)
    script = transform_script("eval(\"var source='https://cdn.example/x/y.m3u8';\"); document.querySelector('x');")

    output = sandbox.evaluate(script)

    assert parse_source_from_output(output) == "https://cdn.example/x/y.m3u8"


def test_evaluate_exposes_base64_helpers():
    sandbox = ScriptSandbox(timeout=10)
    output = sandbox.evaluate("console.log(atob('aGVsbG8='), btoa('hi'), navigator.userAgent.length > 0)")
    assert output == "hello aGk= true"


def test_evaluate_times_out_runaway_scripts():
    sandbox = ScriptSandbox(timeout=0.5)
    assert sandbox.evaluate("console.log('x'); while (true) {}") == ""


PACKED_PAGE = r"""
<html><body>
<video id="player"></video>
<script>var analytics = 1;</script>
<script>eval(function(p,a,c,k,e,d){e=function(c){return c.toString(36)};if(!''.replace(/^/,String)){while(c--){d[c.toString(a)]=k[c]||c.toString(a)}k=[function(e){return d[e]}];e=function(){return'\\w+'};c=1};while(c--){if(k[c]){p=p.replace(new RegExp('\\b'+e(c)+'\\b','g'),k[c])}}return p}('0 1=\'2://3.4/5/6.7\';8.9(\'a\');',11,11,'const|source|https|cdn|example|x|y|m3u8|document|querySelector|video'.split('|'),0,{}))</script>
</body></html>
"""


async def test_extract_unpacks_packed_player_script():
    sandbox = ScriptSandbox(timeout=10)
    assert await sandbox.extract(PACKED_PAGE) == "https://cdn.example/x/y.m3u8"
