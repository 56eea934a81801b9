# -- Runner Tests -- #

'''
Command-line runner on short dam-break and JSON-configured runs.
'''

import json

import pytest

from FluidSim.runner import FluidSimRunner, buildParser, main


def testParserDefaults():
    args = buildParser().parse_args([])
    assert args.config is None
    assert args.preset == 'small2D'
    assert args.solver is None
    assert args.steps is None


def testParserRejectsUnknownSolver():
    with pytest.raises(SystemExit):
        buildParser().parse_args(['--solver', 'pcisph'])


def testMainRunsDamBreak(capsys):
    results = main(['--steps', '3', '--no-progress'])

    assert results['nSteps'] == 3
    assert results['particleCount'] == 100
    assert results['finalState'].step == 3

    output = capsys.readouterr().out
    assert 'FLUIDSIM' in output
    assert 'SIMULATION SUMMARY' in output


def testMainStateEquation(capsys):
    results = main(['--steps', '2', '--solver', 'stateEquation', '--no-progress'])

    assert results['finalState'].divergenceIterations == 0
    assert 'stateEquation' in capsys.readouterr().out


def testRunFromConfig(tmp_path, capsys):
    data = {
        'domain': {'start': [0.0, 0.0], 'end': [0.3, 0.3]},
        'fluid': {'particleRadius': 0.01},
        'particles': {'block': {'min': [0.0, 0.0], 'max': [0.1, 0.1]}},
        'boundary': {'layers': 2, 'openTop': True},
        'steps': 2,
    }
    configPath = tmp_path / 'block.json'
    configPath.write_text(json.dumps(data))

    runner = FluidSimRunner(showProgress=False)
    results = runner.runFromConfig(str(configPath))

    assert results['nSteps'] == 2
    assert results['particleCount'] == 100
    assert len(runner.states) == 2
    assert 'Boundary Particles' in capsys.readouterr().out
