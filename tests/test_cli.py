import pytest

from m88k_errors import AsmError
import m88kasm


SOURCE = """\
; sum two registers and branch back
start:  add %r3, %r4, 100
        bcnd eq0, %r3, start
        .data
value:  .word 0xCAFEF00D
"""


def write_source(tmp_path, text):
    src = tmp_path / "prog.s"
    src.write_text(text, encoding="utf-8")
    return src


def test_run_writes_word_and_readable_files(tmp_path):
    src = write_source(tmp_path, SOURCE)
    out = tmp_path / "prog.hex"
    assert m88kasm.run(["-i", str(src), "-o", str(out), "-r",
                        "-m", "code=0x0,data=0x10"]) == 0

    words = out.read_text(encoding="utf-8").split()
    assert words[0] == "70640064"
    assert words[1] == "E8430000"
    assert words[2] == "00000000"
    assert words[4] == "CAFEF00D"
    assert len(words) == 5

    readable = (tmp_path / "prog.hex_readable.txt").read_text(encoding="utf-8")
    assert "start:" in readable
    assert "value:" in readable
    assert "FIXUP_M88K_PC16(start)" in readable


def test_binary_word_format(tmp_path):
    src = write_source(tmp_path, "rte\n")
    out = tmp_path / "rte.bin"
    assert m88kasm.run(["-i", str(src), "-o", str(out), "-w", "bin"]) == 0
    assert out.read_text(encoding="utf-8").strip() == format(0xF400FC00, "032b")


def test_cpu_option(tmp_path):
    src = write_source(tmp_path, "illop3\n")
    out = tmp_path / "out.hex"
    assert m88kasm.run(["-i", str(src), "-o", str(out)]) == 1
    assert m88kasm.run(["-i", str(src), "-o", str(out), "-c", "mc88110"]) == 0
    assert out.read_text(encoding="utf-8").strip() == "F400FC03"


def test_errors_give_exit_code_1(tmp_path):
    src = write_source(tmp_path, "add %r1, %r2\nfoo %r1\n")
    out = tmp_path / "bad.hex"
    assert m88kasm.run(["-i", str(src), "-o", str(out)]) == 1
    assert not out.exists()


def test_main_raises_on_errors(tmp_path):
    src = write_source(tmp_path, "ld %r1, %r40, 0\n")
    with pytest.raises(AsmError) as excinfo:
        m88kasm.main(["-i", str(src), "-o", str(tmp_path / "x.hex")])
    assert "1 error(s)" in str(excinfo.value)


def test_missing_input(tmp_path):
    assert m88kasm.run(["-i", str(tmp_path / "none.s"), "-o", str(tmp_path / "o.hex")]) == 1


def test_section_overlap_is_an_error(tmp_path):
    src = write_source(tmp_path, "rte\nrte\n.data\n.word 1\n")
    out = tmp_path / "o.hex"
    assert m88kasm.run(["-i", str(src), "-o", str(out), "-m", "code=0,data=4"]) == 1


def test_log_file(tmp_path):
    src = write_source(tmp_path, "rte\n")
    out = tmp_path / "o.hex"
    assert m88kasm.run(["-i", str(src), "-o", str(out), "-l", "-v"]) == 0
    log = (tmp_path / "o.hex.log").read_text(encoding="utf-8")
    assert "Assembly complete." in log
