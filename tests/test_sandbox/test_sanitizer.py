"""Tests for the advisory routine sanitizer."""

from agentic_scraper.sandbox.sanitizer import sanitize_routine


class TestSanitizeRoutine:
    def test_clean_routine_is_unchanged(self):
        source = "rows = select_all('tr')\nreturn [get_text(r) for r in rows]"
        report = sanitize_routine(source)
        assert report.source == source
        assert report.blocked == []
        assert not report.changed

    def test_imports_become_pass(self):
        report = sanitize_routine("import os\nreturn 1")
        assert report.source == "pass\nreturn 1"
        assert report.blocked == ["import os"]
        assert report.changed

    def test_dynamic_evaluation_becomes_none(self):
        report = sanitize_routine("x = eval('1 + 1')\nreturn x")
        assert report.source == "x = None\nreturn x"
        assert report.blocked == ["eval('1 + 1')"]

    def test_network_and_timer_calls_become_none(self):
        report = sanitize_routine(
            "time.sleep(30)\nbody = requests.get('https://example.com')\nreturn body"
        )
        assert report.source == "None\nbody = None\nreturn body"
        assert len(report.blocked) == 2

    def test_nested_dangerous_call(self):
        report = sanitize_routine("return len(os.listdir('/'))")
        assert report.source == "return len(None)"

    def test_unparsable_source_is_returned_as_is(self):
        source = "return (("
        report = sanitize_routine(source)
        assert report.source == source
        assert not report.changed

    def test_names_bound_by_the_routine_are_kept(self):
        source = (
            "time = select('time')\n"
            "def signal(el):\n"
            "    return get_text(el)\n"
            "for os in select_all('li'):\n"
            "    log(signal(os))\n"
            "return time.attr('datetime')"
        )
        report = sanitize_routine(source)
        assert report.source == source
        assert not report.changed

    def test_unbound_root_is_still_neutralized(self):
        report = sanitize_routine("stamp = time.time()\nreturn stamp")
        assert report.source == "stamp = None\nreturn stamp"
