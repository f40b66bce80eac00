from uncertainties import ufloat

from spm_fitting import prager_statistics, reference_points

# Logistic curve (n = 2): Bmsy = K/2, Fmsy = r/2, MSY = rK/4
rp = reference_points(1000.0, 2.0, 0.3, parameterization="rate", convention="both", sdb=0.1)
for name, value in rp.items():
    print(f"{name:>6s}: {value:.4g}")

# Uncertain inputs propagate through the same formulas
K = ufloat(1000.0, 120.0)
r = ufloat(0.3, 0.04)
rp_u = reference_points(K, 2.0, r, convention="deterministic")
print("Bmsy :", rp_u["Bmsyd"])
print("MSY  :", rp_u["MSYd"])

stats = prager_statistics(500.0, [100.0, 200.0, 300.0, 400.0, 500.0, 500.0], 1000.0)
print("nearness:", stats.nearness, "coverage:", stats.coverage)
