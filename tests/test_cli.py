import numpy as np
import pytest

import run_icp
from icpreg import PointCloud


def shift(x, y, z):
    transformation = np.eye(4)
    transformation[:3, 3] = [x, y, z]
    return transformation


@pytest.fixture
def fake_files(monkeypatch, corner_cloud):
    clouds = {
        'target.ply': corner_cloud,
        'source.ply': corner_cloud.transformed(shift(0.1, 0.0, 0.0)),
        'far.ply': corner_cloud.transformed(shift(9.0, 9.0, 9.0)),
    }
    monkeypatch.setattr(PointCloud, 'from_file', classmethod(lambda cls, path: clouds[path]))
    return clouds


def test_parser_defaults():
    args = run_icp.build_parser().parse_args(['register', 'a.ply', 'b.ply'])
    assert args.method == 'point_to_plane'
    assert args.loss == 'none'
    assert args.max_iter == 10
    assert np.isinf(args.max_distance)


def test_register_succeeds(fake_files, capsys):
    status = run_icp.main(['register', 'source.ply', 'target.ply', '--loss', 'huber'])

    out = capsys.readouterr().out
    assert status == 0
    assert "Status: converged" in out


def test_register_reports_failure(fake_files, capsys):
    status = run_icp.main(['register', 'far.ply', 'target.ply', '--max-distance', '0.5'])

    assert status == 1
    assert "Registration failed" in capsys.readouterr().err


def test_no_mode_prints_help(capsys):
    assert run_icp.main([]) == 2
    assert "register" in capsys.readouterr().out


def test_initial_guess_is_translation_first(capsys):
    parser = run_icp.build_parser()
    args = parser.parse_args(['register', 'a.ply', 'b.ply',
                              '--initial-guess', '0.1', '0', '0', '0', '0', '0.2'])

    assert args.initial_guess == [0.1, 0.0, 0.0, 0.0, 0.0, 0.2]
    with pytest.raises(SystemExit):
        parser.parse_args(['register', '--help'])
    assert "translation first" in " ".join(capsys.readouterr().out.split())
