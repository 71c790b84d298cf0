import pytest

from dual_stake_lab.core import WAD, PoolState, to_wad
from dual_stake_lab.errors import DivisionByZero, ZeroShares
from dual_stake_lab.shares import ShareAccountant


def test_first_deposit_mints_one_share_per_usd() -> None:
    assert ShareAccountant.shares_to_mint(to_wad(55_000), 0, 0) == to_wad(55_000)


def test_later_deposits_mint_pro_rata() -> None:
    minted = ShareAccountant.shares_to_mint(to_wad(50), to_wad(200), to_wad(100))
    assert minted == to_wad(25)


def test_degenerate_inputs() -> None:
    with pytest.raises(ZeroShares):
        ShareAccountant.shares_to_mint(0, to_wad(100), to_wad(100))
    with pytest.raises(DivisionByZero):
        ShareAccountant.shares_to_mint(to_wad(1), 0, to_wad(100))
    with pytest.raises(ZeroShares):
        ShareAccountant.shares_to_mint(1, 10**40, 1)
    with pytest.raises(ZeroShares):
        ShareAccountant.assets_to_return(0, PoolState(), 1)
    with pytest.raises(DivisionByZero):
        ShareAccountant.assets_to_return(1, PoolState(), 0)


def test_assets_to_return_is_pro_rata_slice() -> None:
    pool = PoolState(total_pooled_core=to_wad(10_000), total_pooled_btc=to_wad(2))
    core, btc = ShareAccountant.assets_to_return(to_wad(25), pool, to_wad(100))
    assert core == to_wad(2_500)
    assert btc == to_wad("0.5")


def test_entry_then_exit_never_returns_more_than_contributed() -> None:
    pool = PoolState(total_pooled_core=to_wad(7_777), total_pooled_btc=to_wad("1.2345"))
    total_shares = to_wad(3)
    core_price, btc_price = WAD, 50_000 * WAD
    pool_usd = (pool.total_pooled_core * core_price + pool.total_pooled_btc * btc_price) // WAD

    minted = ShareAccountant.shares_to_mint(to_wad(1_001), pool_usd, total_shares)
    pool.total_pooled_core += to_wad(1_001)
    core, btc = ShareAccountant.assets_to_return(minted, pool, total_shares + minted)

    returned_usd = (core * core_price + btc * btc_price) // WAD
    assert returned_usd <= to_wad(1_001)


def test_nav_defaults_to_one() -> None:
    assert ShareAccountant.nav(0, 0) == WAD
    assert ShareAccountant.nav(to_wad(110), to_wad(100)) == to_wad("1.1")
