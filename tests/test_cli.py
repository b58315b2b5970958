"""
acckit command-line tests — drive main() with argument lists.
"""
import sys
import os
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

import json

import acckit

SUM_ASM = os.path.join(ROOT, "programs", "sum.asm")
COUNTDOWN_ASM = os.path.join(ROOT, "programs", "countdown.asm")


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


class TestAsm:

    def test_prints_program_and_data(self, capsys):
        assert acckit.main(["asm", SUM_ASM]) == 0
        out = capsys.readouterr().out
        assert "program: 1 10 3 11 7 2 12 255" in out
        assert "10=7 11=3" in out

    def test_listing(self, capsys):
        assert acckit.main(["asm", SUM_ASM, "--listing"]) == 0
        assert "0000  01 0A" in capsys.readouterr().out

    def test_json_image(self, tmp_path, capsys):
        out = str(tmp_path / "sum.json")
        assert acckit.main(["asm", SUM_ASM, "-o", out]) == 0
        with open(out) as f:
            image = json.load(f)
        assert image == {"origin": 0, "program": [1, 10, 3, 11, 7, 2, 12, 255],
                         "data": {"10": 7, "11": 3}}
        assert "Assembled 8 bytes" in capsys.readouterr().out

    def test_binary_image_warns_about_data(self, tmp_path, capsys):
        out = str(tmp_path / "sum.bin")
        assert acckit.main(["asm", SUM_ASM, "-o", out]) == 0
        with open(out, "rb") as f:
            assert f.read() == bytes([1, 10, 3, 11, 7, 2, 12, 255])
        assert "DATA" in capsys.readouterr().err

    def test_assembly_error_exit_code(self, tmp_path, capsys):
        src = _write(tmp_path, "bad.asm", "NOP\nLOAD\n")
        assert acckit.main(["asm", src]) == 1
        assert "Assembly error: Line 2" in capsys.readouterr().err

    def test_strict(self, tmp_path, capsys):
        src = _write(tmp_path, "warn.asm", "FOO\nHALT\n")
        assert acckit.main(["asm", src]) == 0
        assert acckit.main(["asm", src, "--strict"]) == 1

    def test_missing_input(self, tmp_path, capsys):
        assert acckit.main(["asm", str(tmp_path / "absent.asm")]) == 1
        assert "Error:" in capsys.readouterr().err


class TestRun:

    def test_sum(self, capsys):
        assert acckit.main(["run", SUM_ASM]) == 0
        out = capsys.readouterr().out
        assert "OUT: 10" in out
        assert "HALT after 5 steps" in out
        assert "ACC= 10" in out

    def test_countdown_output(self, capsys):
        assert acckit.main(["run", COUNTDOWN_ASM]) == 0
        out = capsys.readouterr().out
        outs = [line for line in out.splitlines() if line.startswith("OUT:")]
        assert outs == ["OUT: 5", "OUT: 4", "OUT: 3", "OUT: 2", "OUT: 1"]
        assert "HALT after 26 steps" in out

    def test_timeout_exit_code(self, tmp_path, capsys):
        src = _write(tmp_path, "loop.asm", "top: JMP top\n")
        assert acckit.main(["run", src, "--max-steps", "5"]) == 3
        assert "TIMEOUT after 5 steps" in capsys.readouterr().out

    def test_trace_and_dump(self, capsys):
        assert acckit.main(["run", SUM_ASM, "--trace", "--dump"]) == 0
        out = capsys.readouterr().out
        assert "$00: LOAD 10" in out
        assert "0000  01 0A 03 0B" in out

    def test_config_error(self, capsys):
        assert acckit.main(["run", SUM_ASM, "--size", "0"]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_config_file(self, tmp_path, capsys):
        cfg = _write(tmp_path, "cfg.json", json.dumps({"max_steps": 2}))
        assert acckit.main(["run", SUM_ASM, "--config", cfg]) == 3

    def test_realtime(self, tmp_path, capsys):
        src = _write(tmp_path, "short.asm", "NOP\nHALT\n")
        assert acckit.main(["run", src, "--realtime", "--interval", "100"]) == 0
        out = capsys.readouterr().out
        assert "[  1] NOP" in out
        assert "HALT after 2 steps" in out

    def test_realtime_step_budget(self, tmp_path, capsys):
        src = _write(tmp_path, "loop.asm", "top: JMP top\n")
        assert acckit.main(["run", src, "--realtime", "--interval", "100",
                            "--max-steps", "3"]) == 3
        assert "TIMEOUT after 3 steps" in capsys.readouterr().out


class TestDisasm:

    def test_binary(self, tmp_path, capsys):
        path = tmp_path / "prog.bin"
        path.write_bytes(bytes([1, 10, 255]))
        assert acckit.main(["disasm", str(path)]) == 0
        out = capsys.readouterr().out
        assert "LOAD 10" in out
        assert "HALT" in out

    def test_json_uses_origin(self, tmp_path, capsys):
        path = _write(tmp_path, "prog.json",
                      json.dumps({"origin": 16, "program": [7, 255], "data": {}}))
        assert acckit.main(["disasm", path]) == 0
        assert "0017  FF" in capsys.readouterr().out

    def test_json_without_program(self, tmp_path, capsys):
        path = _write(tmp_path, "empty.json", json.dumps({"origin": 0, "data": {}}))
        assert acckit.main(["disasm", path]) == 1
        assert "program" in capsys.readouterr().err


class TestMisc:

    def test_no_command_prints_help(self, capsys):
        assert acckit.main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_parse_int_arg(self):
        assert acckit.parse_int_arg("0x10") == 16
        assert acckit.parse_int_arg("$1F") == 31
        assert acckit.parse_int_arg(" 12 ") == 12
