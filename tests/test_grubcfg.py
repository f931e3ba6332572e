from sky1_image.boards import BOARDS
from sky1_image.lib import grubcfg
from sky1_image.lib.bootloader import render_grub_cfg

O6 = "/sky1-orion-o6.dtb"
O6N = "/sky1-orion-o6n.dtb"

SAMPLE = """\
set timeout=-1
insmod part_gpt

menuentry 'Sky1 Linux - O6' {
    devicetree ($root)/boot/dtbs/sky1-orion-o6.dtb
    linux ($root)/boot/vmlinuz root=UUID=abc rw
}

menuentry "Sky1 Linux - O6N" --class sky1 {
    devicetree ($root)/boot/dtbs/sky1-orion-o6n.dtb
    if [ x$feature = xy ]; then
        echo '{ not a brace }'
    fi
}
# comment with { brace
menuentry 'Sky1 Linux (recovery) - O6' {
    devicetree ($root)/boot/dtbs/sky1-orion-o6.dtb
    linux ($root)/boot/vmlinuz single
}
menuentry 'Orange Pi' {
    devicetree ($root)/boot/dtbs/sky1-orangepi-6-plus.dtb
}
"""


def test_parse_round_trips_byte_for_byte() -> None:
    assert grubcfg.render(grubcfg.parse(SAMPLE)) == SAMPLE


def test_parse_finds_every_entry() -> None:
    titles = [e.title for e in grubcfg.entries(grubcfg.parse(SAMPLE))]
    assert titles == ["Sky1 Linux - O6", "Sky1 Linux - O6N", "Sky1 Linux (recovery) - O6", "Orange Pi"]


def test_prune_removes_exactly_the_referencing_entries() -> None:
    before = grubcfg.entries(grubcfg.parse(SAMPLE))
    k = sum(1 for e in before if e.references(O6))

    text, removed = grubcfg.prune(SAMPLE, [O6])
    after = grubcfg.entries(grubcfg.parse(text))

    assert len(removed) == k == 2
    assert len(after) == len(before) - k
    # survivors are unchanged and keep their relative order
    assert [e.text for e in after] == [e.text for e in before if not e.references(O6)]
    assert "set timeout=-1\n" in text
    assert "# comment with { brace\n" in text


def test_prune_without_matches_is_identity() -> None:
    text, removed = grubcfg.prune(SAMPLE, ["/sky1-unknown.dtb"])
    assert text == SAMPLE
    assert removed == []


def test_unbalanced_entry_does_not_swallow_later_entries() -> None:
    broken = """\
menuentry 'broken' {
    devicetree ($root)/boot/dtbs/sky1-orion-o6.dtb
menuentry 'A' {
    devicetree ($root)/boot/dtbs/sky1-orion-o6.dtb
}
menuentry 'B' {
    devicetree ($root)/boot/dtbs/sky1-orion-o6n.dtb
}
"""
    blocks = grubcfg.parse(broken)
    assert grubcfg.render(blocks) == broken
    assert [e.title for e in grubcfg.entries(blocks)] == ["A", "B"]

    text, removed = grubcfg.prune(broken, [O6])
    assert [e.title for e in removed] == ["A"]
    assert "menuentry 'B' {" in text
    assert "menuentry 'broken' {" in text


def test_entry_missing_closing_brace_at_eof_is_kept() -> None:
    text = "menuentry 'A' {\n    devicetree /dtbs/sky1-orion-o6.dtb\n"
    pruned, removed = grubcfg.prune(text, [O6])
    assert removed == []
    assert pruned == text


def test_generated_config_prunes_to_one_entry_per_board() -> None:
    cfg = render_grub_cfg(kernel_version="6.18.10-sky1", root_uuid="1234-abcd")
    assert len(grubcfg.entries(grubcfg.parse(cfg))) == len(BOARDS)

    for board in BOARDS:
        exclude = [b.dtb_ref for b in BOARDS if b.key != board.key]
        text, removed = grubcfg.prune(cfg, exclude)
        left = grubcfg.entries(grubcfg.parse(text))
        assert len(removed) == len(BOARDS) - 1
        assert len(left) == 1
        assert left[0].references(board.dtb_ref)
        assert left[0].title.endswith(board.label)
