from __future__ import annotations

from unittest.mock import Mock, patch

from needle.notify import Notifier, build_command, detect_backend, truncate


def test_truncate_title():
    assert truncate("short") == "short"
    long_title = "x" * 80
    out = truncate(long_title)
    assert len(out) == 50
    assert out.endswith("…")


def test_detect_backend_per_platform():
    def which_only(*names):
        return lambda cmd: f"/usr/bin/{cmd}" if cmd in names else None

    assert detect_backend("darwin", which_only("terminal-notifier", "osascript")) == "terminal-notifier"
    assert detect_backend("darwin", which_only("osascript")) == "osascript"
    assert detect_backend("linux", which_only("notify-send")) == "notify-send"
    assert detect_backend("linux", which_only()) is None


def test_build_command_includes_url_for_click_to_open():
    cmd = build_command("terminal-notifier", "❌ CI Failed", "acme/api", "Fix it", "https://x")
    assert cmd[:1] == ["terminal-notifier"]
    assert cmd[cmd.index("-open") + 1] == "https://x"
    assert cmd[cmd.index("-subtitle") + 1] == "acme/api"

    cmd = build_command("notify-send", "Title", "acme/api", "Body", "https://x")
    assert cmd[0] == "notify-send"
    assert cmd[-1] == "acme/api\nBody\nhttps://x"

    cmd = build_command("osascript", "T", "", 'say "hi"', None)
    assert cmd[:2] == ["osascript", "-e"]
    assert '\\"hi\\"' in cmd[2]


def test_notifier_sends_via_backend():
    notifier = Notifier(enabled=True, backend="notify-send")
    with patch("needle.notify.subprocess.Popen") as popen:
        notifier.ci_failure("Fix flaky test", "acme/api", "https://x")
        notifier.needs_you(2)
    assert popen.call_count == 2
    first_cmd = popen.call_args_list[0].args[0]
    assert first_cmd[2] == "❌ CI Failed"
    assert "2 PRs need your attention" in popen.call_args_list[1].args[0][-1]


def test_notifier_disabled_or_missing_backend_is_noop():
    with patch("needle.notify.subprocess.Popen") as popen:
        Notifier(enabled=False, backend="notify-send").review_requested("t", "r", "u")
        Notifier(enabled=True, backend="").new_repo("acme/api")
    popen.assert_not_called()


def test_notifier_swallows_failures():
    notifier = Notifier(enabled=True, backend="notify-send")
    with patch("needle.notify.subprocess.Popen", side_effect=OSError("no dbus")):
        notifier.ready_to_merge("t", "r", "u")


def test_notifier_reaps_finished_processes():
    notifier = Notifier(enabled=True, backend="notify-send")
    done, running = Mock(), Mock()
    done.poll.return_value = 0
    running.poll.return_value = None

    with patch("needle.notify.subprocess.Popen", side_effect=[done, running]):
        notifier.new_repo("acme/api")
        notifier.new_repo("acme/web")

    assert notifier.reap() == 1
    running.poll.return_value = 0
    assert notifier.reap() == 0
