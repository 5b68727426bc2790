import os
import stat

import pytest

from vtlogin.config import SessionConfig
from vtlogin.session import define_environment, ensure_runtime_dir
from vtlogin.user import DesktopSelection, Family, UserIdentity

FALLBACK_VARS = (
    "XDG_CONFIG_HOME",
    "XDG_RUNTIME_DIR",
    "XDG_SEAT",
    "XDG_SESSION_CLASS",
    "XDG_VTNR",
    "DESKTOP_SESSION",
    "XDG_SESSION_DESKTOP",
    "XDG_CURRENT_DESKTOP",
)


@pytest.fixture
def alice():
    return UserIdentity(
        username="alice", uid=1000, gid=1000, homedir="/home/alice", shell="/bin/zsh"
    )


@pytest.fixture
def no_mkdir(monkeypatch):
    created = []
    monkeypatch.setattr(
        "vtlogin.session.ensure_runtime_dir", lambda identity: created.append(identity)
    )
    return created


@pytest.fixture
def compositor():
    return DesktopSelection(
        family=Family.WAYLAND,
        exec="startcompositor",
        name="Compositor",
        desktop_names=["Compositor", "wlroots"],
    )


class TestEnvironmentPolicy:
    def test_always_set_vars(self, alice, compositor, no_mkdir):
        define_environment(alice, compositor, SessionConfig(tty=2))
        assert alice.getenv("HOME") == "/home/alice"
        assert alice.getenv("PWD") == "/home/alice"
        assert alice.getenv("USER") == "alice"
        assert alice.getenv("LOGNAME") == "alice"
        assert alice.getenv("UID") == "1000"
        assert alice.getenv("SHELL") == "/bin/zsh"

    def test_fallback_vars(self, alice, compositor, no_mkdir):
        define_environment(alice, compositor, SessionConfig(tty=2))
        assert alice.getenv("XDG_CONFIG_HOME") == "/home/alice/.config"
        assert alice.getenv("XDG_RUNTIME_DIR") == "/run/user/1000"
        assert alice.getenv("XDG_SEAT") == "seat0"
        assert alice.getenv("XDG_SESSION_CLASS") == "user"
        assert alice.getenv("XDG_VTNR") == "2"
        assert alice.getenv("DESKTOP_SESSION") == "Compositor"
        assert alice.getenv("XDG_SESSION_DESKTOP") == "Compositor"
        assert alice.getenv("XDG_CURRENT_DESKTOP") == "Compositor:wlroots"
        assert no_mkdir == [alice]

    def test_existing_fallback_vars_are_kept(self, alice, compositor, no_mkdir):
        alice.env.update(
            {
                "XDG_RUNTIME_DIR": "/tmp/alice-run",
                "XDG_SEAT": "seat1",
                "XDG_SESSION_CLASS": "greeter",
            }
        )
        define_environment(alice, compositor, SessionConfig())
        assert alice.getenv("XDG_RUNTIME_DIR") == "/tmp/alice-run"
        assert alice.getenv("XDG_SEAT") == "seat1"
        # session class is always forced
        assert alice.getenv("XDG_SESSION_CLASS") == "user"

    def test_lang_is_preserved(self, alice, compositor, no_mkdir):
        alice.setenv("LANG", "fr_FR.UTF-8")
        define_environment(alice, compositor, SessionConfig(lang="de_DE.UTF-8"))
        assert alice.getenv("LANG") == "fr_FR.UTF-8"

    def test_lang_default(self, alice, compositor, no_mkdir):
        define_environment(alice, compositor, SessionConfig(lang="de_DE.UTF-8"))
        assert alice.getenv("LANG") == "de_DE.UTF-8"

    def test_path_inherited_if_absent(self, alice, compositor, no_mkdir, monkeypatch):
        monkeypatch.setenv("PATH", "/usr/local/bin:/usr/bin")
        define_environment(alice, compositor, SessionConfig())
        assert alice.getenv("PATH") == "/usr/local/bin:/usr/bin"

    def test_path_kept_if_present(self, alice, compositor, no_mkdir):
        alice.setenv("PATH", "/opt/bin")
        define_environment(alice, compositor, SessionConfig())
        assert alice.getenv("PATH") == "/opt/bin"

    def test_shell_overwritten_with_default(self, compositor, no_mkdir):
        bob = UserIdentity("bob", 1001, 1001, "/home/bob", env={"SHELL": "/bin/fish"})
        define_environment(bob, compositor, SessionConfig())
        assert bob.getenv("SHELL") == "/bin/sh"

    def test_suppressed_fallback(self, alice, compositor, no_mkdir):
        define_environment(alice, compositor, SessionConfig(tty=2, no_xdg_fallback=True))
        for var in FALLBACK_VARS:
            assert var not in alice.env, var
        assert no_mkdir == []
        # the rest still applies
        assert alice.getenv("HOME") == "/home/alice"
        assert alice.getenv("LANG") == "en_US.UTF-8"

    def test_desktop_name_from_child(self, alice, no_mkdir):
        child = DesktopSelection(family=Family.WAYLAND, exec="sway", name="Sway")
        wrapper = DesktopSelection(family=Family.WAYLAND, exec="start-wm", child=child)
        define_environment(alice, wrapper, SessionConfig())
        assert alice.getenv("DESKTOP_SESSION") == "Sway"
        assert alice.getenv("XDG_SESSION_DESKTOP") == "Sway"

    def test_no_desktop_name(self, alice, no_mkdir):
        anonymous = DesktopSelection(family=Family.WAYLAND, exec="startcompositor")
        define_environment(alice, anonymous, SessionConfig())
        assert "DESKTOP_SESSION" not in alice.env
        assert "XDG_CURRENT_DESKTOP" not in alice.env


class TestRuntimeDir:
    def test_created_private(self, identity, tmp_path):
        ensure_runtime_dir(identity)
        runtime_dir = tmp_path / "run"
        assert runtime_dir.is_dir()
        assert stat.S_IMODE(os.stat(runtime_dir).st_mode) == 0o700
        assert os.stat(runtime_dir).st_uid == identity.uid

    def test_existing_left_alone(self, identity, tmp_path):
        runtime_dir = tmp_path / "run"
        runtime_dir.mkdir(mode=0o755)
        os.chmod(runtime_dir, 0o755)
        ensure_runtime_dir(identity)
        assert stat.S_IMODE(os.stat(runtime_dir).st_mode) == 0o755

    def test_failure_is_logged_only(self, identity, tmp_path, capsys):
        blocker = tmp_path / "file"
        blocker.write_text("")
        identity.setenv("XDG_RUNTIME_DIR", str(blocker / "run"))
        ensure_runtime_dir(identity)
        assert "Could not create runtime dir" in capsys.readouterr().out
