import numpy as np
import pytest

from spm_fitting import FormatError, Observations, read_aspic, read_aspic_result, write_aspic


def _observations():
    rng = np.random.default_rng(0)
    years = np.arange(1990.0, 2005.0)
    catch = rng.uniform(50.0, 150.0, size=years.size)
    index1 = rng.uniform(0.5, 2.0, size=years.size)
    keep2 = years >= 1995.0
    index2 = rng.uniform(10.0, 20.0, size=int(keep2.sum()))
    return Observations(
        time_catch=years,
        obs_catch=catch,
        time_index=(years[1:], years[keep2]),
        obs_index=(index1[1:], index2),
    )


def test_round_trip_is_exact(tmp_path):
    obs = _observations()
    path = tmp_path / "stock.a7inp"
    write_aspic(obs, path)

    back = read_aspic(path)
    assert back.version == "ASPIC-V7"
    assert back.nobs == 15
    assert back.types == ("CC", "I1")
    np.testing.assert_array_equal(back.time_catch, obs.time_catch)
    np.testing.assert_array_equal(back.obs_catch, obs.obs_catch)
    for s in range(2):
        np.testing.assert_array_equal(back.time_index[s], obs.time_index[s])
        np.testing.assert_array_equal(back.obs_index[s], obs.obs_index[s])

    again = back.to_observations()
    assert again.nindex == 2


def test_header_initial_values(tmp_path):
    obs = _observations()
    path = tmp_path / "stock.a7inp"
    ini = {"logr": np.log(0.4), "logK": np.log(2000.0), "logq": [np.log(1e-3), np.log(1e-2)]}
    write_aspic(obs, path, ini=ini)

    text = path.read_text().splitlines()
    assert text[0] == "ASPIC-V7"
    assert any(line.startswith("MSY   2.00E+02") for line in text)
    assert any(line.startswith("Fmsy  2.00E-01") for line in text)
    assert sum(line.startswith("q ") for line in text) == 2

    back = read_aspic(path)
    assert back.msy == pytest.approx(200.0)
    assert back.fmsy == pytest.approx(0.2)
    g = back.guesses("rate")
    assert g["logr"] == pytest.approx(np.log(0.4))
    assert g["logK"] == pytest.approx(np.log(2000.0))
    np.testing.assert_allclose(g["logq"], np.log([1e-3, 1e-2]))
    assert back.guesses("yield")["logm"] == pytest.approx(np.log(200.0))


def test_non_integer_times_are_floored(tmp_path):
    obs = Observations(
        time_catch=np.array([2000.5, 2001.5, 2002.5]),
        obs_catch=np.array([10.0, 11.0, 12.0]),
        time_index=(np.array([2000.5, 2001.5, 2002.5]),),
        obs_index=(np.array([1.0, 0.9, 0.8]),),
    )
    path = tmp_path / "half.a7inp"
    with pytest.warns(UserWarning, match="floored"):
        write_aspic(obs, path)
    back = read_aspic(path)
    np.testing.assert_array_equal(back.time_catch, [2000.0, 2001.0, 2002.0])
    np.testing.assert_array_equal(back.obs_catch, obs.obs_catch)


CE_FILE = """ASPIC-V7
# comment line
"Effort stock"
FIT  102  1000  95
LOGISTIC  YLD  SSE
4  2
0  30000
1.00E-08  3.00E-08  1.00E-04
8.00E+00  6  24
1234
B1K   8.00E-01  1  8.00E-03  8.00E+01  penalty  0.00E+00
MSY   1.00E+02  1  3.00E+00  5.00E+05
Fmsy  2.50E-01  1  2.50E-03  2.50E+01
q     1.00E-03  1  1.00E+00  1.00E-06  1.00E-01
q     2.00E-03  1  1.00E+00  2.00E-06  2.00E-01
DATA
"Fleet"
CE
  2001    10.0    50.0
  2002    -1      40.0
  2003    20.0    60.0
  2004    25.0    -1
"Survey"
B1
  2001    3.0
  2002    -1
  2003    2.5
  2004    2.0
"""


def test_read_catch_effort_file(tmp_path):
    path = tmp_path / "ce.a7inp"
    path.write_text(CE_FILE)
    inp = read_aspic(path)
    assert inp.title == "Effort stock"
    assert inp.types == ("CE", "B1")
    assert inp.names == ("Fleet", "Survey")
    np.testing.assert_array_equal(inp.time_catch, [2001.0, 2002.0, 2003.0])
    np.testing.assert_array_equal(inp.obs_catch, [50.0, 40.0, 60.0])
    np.testing.assert_allclose(inp.obs_index[0], [5.0, 3.0])
    np.testing.assert_array_equal(inp.time_index[0], [2001.0, 2003.0])
    np.testing.assert_array_equal(inp.time_index[1], [2001.0, 2003.0, 2004.0])
    assert inp.q == (1e-3, 2e-3)
    assert inp.b1k == pytest.approx(0.8)


def test_blank_header_line_keeps_its_position(tmp_path):
    path = tmp_path / "blank.a7inp"
    text = CE_FILE.replace("1234\n", "\n").replace("  2002    -1\n", "\n  2002    -1\n")
    path.write_text(text)
    inp = read_aspic(path)
    assert inp.b1k == pytest.approx(0.8)
    assert inp.msy == pytest.approx(100.0)
    assert inp.q == (1e-3, 2e-3)
    np.testing.assert_array_equal(inp.time_index[1], [2001.0, 2003.0, 2004.0])


@pytest.mark.parametrize(
    "mutate",
    [
        lambda s: s.replace("DATA\n", ""),
        lambda s: s.replace("\nB1\n", "\nX9\n"),
        lambda s: s.replace("  2004    2.0\n", ""),
        lambda s: s.replace("  2003    20.0    60.0", "  2003    twenty    60.0"),
        lambda s: s.replace("CE\n", "CC\n").replace("  2001    10.0    50.0", "  2001    10.0"),
    ],
)
def test_malformed_input_raises(tmp_path, mutate):
    path = tmp_path / "bad.a7inp"
    path.write_text(mutate(CE_FILE))
    with pytest.raises(FormatError):
        read_aspic(path)


RESULT_FILE = """ASPIC -- A Surplus-Production Model Including Covariates
Stock: example
Number of years analyzed:   3        Number of bootstrap trials:   0

PARAMETER ESTIMATES
B1/K   Starting relative biomass (in 2001)    7.500E-01
MSY    Maximum sustainable yield               8.000E+01
Fmsy   Fishing mortality rate at MSY           2.000E-01
q(1)   Catchability coefficient                1.500E-03

ESTIMATED POPULATION TRAJECTORY (NON-BOOTSTRAPPED)
-----------------------------------------------------------
      Year   Est. F   Starting  Average  Observed  Model  Surplus
 Obs  or ID  mort     biomass   biomass  yield     yield  production  F/Fmsy  B/Bmsy
-----------------------------------------------------------
          header filler line
          header filler line
   1   2001  0.100  600.0  610.0  61.0  61.0  70.0  0.50  1.50
   2   2002  0.120  610.0  605.0  72.6  72.6  71.0  0.60  1.52
   3   2003  0.150  605.0  590.0  88.5  88.5  72.0  0.75  1.51
"""


def test_read_result_file(tmp_path):
    path = tmp_path / "example.rdat"
    path.write_text(RESULT_FILE)
    res = read_aspic_result(path)
    assert res.nobs == 3
    assert res.params["MSY"] == pytest.approx(80.0)
    assert res.params["Fmsy"] == pytest.approx(0.2)
    assert res.params["Bmsy"] == pytest.approx(400.0)
    assert res.params["K"] == pytest.approx(800.0)
    assert res.params["r"] == pytest.approx(0.4)
    assert res.params["q"] == pytest.approx(1.5e-3)
    assert res.params["bkfrac"] == pytest.approx(0.75)
    np.testing.assert_array_equal(res.states["time"], [2001.0, 2002.0, 2003.0])
    np.testing.assert_allclose(res.states["BBmsy"], [1.50, 1.52, 1.51])


def test_truncated_result_file(tmp_path):
    path = tmp_path / "short.rdat"
    path.write_text(RESULT_FILE.rsplit("\n", 2)[0] + "\n")
    with pytest.raises(FormatError):
        read_aspic_result(path)
