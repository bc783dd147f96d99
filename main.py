import logging

from hullwhite.HullWhite import OneFactorHullWhiteModel
from hullwhite.HullWhiteTrinomialTree import build_time_grid
from hullwhite.Option import OptionType
from hullwhite.TermStructure import InterpolatedZeroRateCurve, RelinkableTermStructure, FlatForwardCurve

logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

curve_handle = RelinkableTermStructure(InterpolatedZeroRateCurve.example())
model = OneFactorHullWhiteModel(curve_handle, a=0.03, sigma=0.01)

# 1Y option on a 5Y zero, struck at the forward bond price
forward_bond = curve_handle.discount(5.0) / curve_handle.discount(1.0)
call = model.discount_bond_option(OptionType.CALL, forward_bond, 1.0, 5.0)
put = model.discount_bond_option(OptionType.PUT, forward_bond, 1.0, 5.0)
print(f"phi(1):\t\t{model.phi(1.0):.6f}")
print(f"ZCB call:\t{call * 1e4:.4f} bps")
print(f"ZCB put:\t{put * 1e4:.4f} bps")

grid = build_time_grid([1.0, 5.0], timestep=1/12)
tree = model.tree(grid, desc="1Y5Y")
bond_at_expiry = tree.discount_bond(12, len(grid) - 1)
tree_call = tree.present_value((bond_at_expiry - forward_bond).clip(min=0.0), 12)
print(f"Tree call:\t{tree_call * 1e4:.4f} bps")
print(tree.to_dataframe().head(15))

# relinking the handle regenerates the model's fitting parameter
curve_handle.link_to(FlatForwardCurve(0.05))
print(f"phi(1) on flat 5%:\t{model.phi(1.0):.6f}")

print("Done!")
