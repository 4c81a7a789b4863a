import pytest

from xvsim import mmu
from xvsim.mmu import GateDescriptor, SegmentDescriptor


@pytest.mark.parametrize("va", [0, 0x1234, 0x80000000, 0xFFFFFFFF, 0x00403ABC])
def test_pgaddr_roundtrip(va):
    assert mmu.pgaddr(mmu.pdx(va), mmu.ptx(va), va & 0xFFF) == va


@pytest.mark.parametrize("sz", [0, 1, 4095, 4096, 4097, 123456])
def test_pground_invariants(sz):
    up = mmu.pgroundup(sz)
    down = mmu.pgrounddown(sz)
    assert up % mmu.PGSIZE == 0
    assert down % mmu.PGSIZE == 0
    assert down <= sz <= up
    assert up - sz < mmu.PGSIZE
    assert sz - down < mmu.PGSIZE


def test_pgroundup_page_is_fixed_point():
    assert mmu.pgroundup(mmu.PGSIZE) == mmu.PGSIZE
    assert mmu.pgrounddown(mmu.PGSIZE + 1) == mmu.PGSIZE


@pytest.mark.parametrize("pte", [0, 0x1007, 0xFFFFF0FF, 0x12345ABC])
def test_pte_split(pte):
    assert mmu.pte_addr(pte) | mmu.pte_flags(pte) == pte
    assert mmu.pte_addr(pte) & mmu.pte_flags(pte) == 0


def test_v2p_p2v():
    assert mmu.p2v(0) == mmu.KERNBASE
    assert mmu.v2p(mmu.KERNLINK) == mmu.EXTMEM
    for addr in (0, 0x100000, mmu.PHYSTOP):
        assert mmu.v2p(mmu.p2v(addr)) == addr


def test_kernel_code_segment_bytes():
    desc = SegmentDescriptor.seg(mmu.STA_X | mmu.STA_R, 0, 0xFFFFFFFF, 0)
    assert desc.to_bytes() == bytes.fromhex("ffff0000009acf00")


def test_kernel_data_segment_bytes():
    desc = SegmentDescriptor.seg(mmu.STA_W, 0, 0xFFFFFFFF, 0)
    assert desc.to_bytes() == bytes.fromhex("ffff00000092cf00")


@pytest.mark.parametrize(
    "type_,base,lim",
    [(mmu.STA_X | mmu.STA_R, 0, 0xFFFFFFFF), (mmu.STA_W, 0x12345678, 0xFFFFF000)],
)
def test_seg_asm_matches_descriptor(type_, base, lim):
    assert mmu.seg_asm(type_, base, lim) == SegmentDescriptor.seg(type_, base, lim, 0).to_bytes()


def test_segment_roundtrip():
    desc = SegmentDescriptor.seg(mmu.STA_W, 0xABCDEF01, 0xFFFFFFFF, mmu.DPL_USER)
    again = SegmentDescriptor.from_bytes(desc.to_bytes())
    assert again == desc
    assert again.dpl == mmu.DPL_USER
    assert again.base_31_24 == 0xAB


def test_seg16_fields():
    desc = SegmentDescriptor.seg16(mmu.STS_T32A, 0x1000, 0x67, 0)
    assert desc.g == 0
    assert desc.db == 1
    assert desc.lim_15_0 == 0x67
    assert SegmentDescriptor.from_bytes(desc.to_bytes()) == desc


def test_gate_make_and_roundtrip():
    gate = GateDescriptor.make(True, mmu.SEG_KCODE << 3, 0x12345678, mmu.DPL_USER)
    assert gate.type == mmu.STS_TG32
    assert gate.off_15_0 == 0x5678
    assert gate.off_31_16 == 0x1234
    assert gate.p == 1
    assert GateDescriptor.from_bytes(gate.to_bytes()) == gate


def test_interrupt_gate_type():
    gate = GateDescriptor.make(False, mmu.SEG_KCODE << 3, 0, 0)
    assert gate.type == mmu.STS_IG32
    assert gate.dpl == 0


def test_from_bytes_wrong_length():
    with pytest.raises(ValueError):
        SegmentDescriptor.from_bytes(b"\x00" * 7)
    with pytest.raises(ValueError):
        GateDescriptor.from_bytes(b"\x00" * 9)