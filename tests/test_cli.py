"""
CLI command tests using Click's test runner.
"""

import json
import shutil

import pytest

from dtm_volume.cli import main
from dtm_volume.io.grid_store import load_grid, save_grid


@pytest.fixture
def boundary_csv(tmp_path):
    """Square boundary 6 x 6 units inside the epoch surveys (northing, easting)."""
    path = tmp_path / "boundary.csv"
    path.write_text(
        "Point,Northing,Easting\n"
        "1,4000002,500002\n"
        "2,4000002,500008\n"
        "3,4000008,500008\n"
        "4,4000008,500002\n",
        encoding="utf-8",
    )
    return path


class TestCLIInfo:
    """Test 'info' command."""

    def test_info_folder(self, cli_runner, epoch_dirs):
        """Test info command on a survey folder."""
        result = cli_runner.invoke(main, ['info', str(epoch_dirs[0])])

        assert result.exit_code == 0
        assert 'VERTEX SOURCE INFO' in result.output
        assert 'Vertices:  441' in result.output
        assert 'tile.obj' in result.output

    def test_info_missing_file(self, cli_runner):
        """Test info command with missing file."""
        result = cli_runner.invoke(main, ['info', 'nonexistent.obj'])

        assert result.exit_code != 0

    def test_version(self, cli_runner):
        result = cli_runner.invoke(main, ['--version'])

        assert result.exit_code == 0
        assert '0.1.0' in result.output


class TestCLIGridAndVolume:
    """Test 'grid' followed by 'volume'."""

    def test_grid_then_volume(self, cli_runner, epoch_dirs, tmp_output_dir):
        grid1 = tmp_output_dir / "epoch1.npz"
        grid2 = tmp_output_dir / "epoch2.npz"
        output_json = tmp_output_dir / "result.json"

        for folder, out in zip(epoch_dirs, (grid1, grid2)):
            result = cli_runner.invoke(main, ['grid', str(folder), '-o', str(out), '-g', '1.0'])
            assert result.exit_code == 0, result.output
            assert out.exists()

        saved = load_grid(grid1)
        assert saved.anchor.x == 500000.0
        assert saved.shape == (12, 12)

        result = cli_runner.invoke(main, [
            'volume', str(grid1), str(grid2),
            '--output', str(output_json),
        ])

        assert result.exit_code == 0, result.output
        assert 'VOLUME COMPARISON SUMMARY' in result.output

        data = json.loads(output_json.read_text(encoding="utf-8"))
        assert data['fill_volume'] == pytest.approx(144.0)
        assert data['cut_volume'] == 0.0

    def test_grid_size_from_environment(self, cli_runner, epoch_dirs, tmp_output_dir):
        out = tmp_output_dir / "epoch1.npz"

        result = cli_runner.invoke(
            main,
            ['grid', str(epoch_dirs[0]), '-o', str(out)],
            env={'DTM_VOLUME_GRID_GRID_SIZE': '2.0'},
        )

        assert result.exit_code == 0, result.output
        assert load_grid(out).grid_size == 2.0

    def test_grid_too_large(self, cli_runner, epoch_dirs, tmp_output_dir):
        result = cli_runner.invoke(main, [
            'grid', str(epoch_dirs[0]),
            '-o', str(tmp_output_dir / "g.npz"),
            '--max-cells', '10',
        ])

        assert result.exit_code == 1
        assert 'Error generating grid' in result.output
        assert 'Increase the grid size' in result.output

    def test_grid_without_vertices(self, cli_runner, tmp_path):
        empty = tmp_path / "empty.obj"
        empty.write_text("# no vertices\n", encoding="utf-8")

        result = cli_runner.invoke(main, ['grid', str(empty), '-o', str(tmp_path / "g.npz")])

        assert result.exit_code == 1
        assert 'No valid vertex data' in result.output

    def test_volume_missing_grid(self, cli_runner, tmp_output_dir):
        result = cli_runner.invoke(main, [
            'volume', str(tmp_output_dir / "a.npz"), str(tmp_output_dir / "b.npz"),
        ])

        assert result.exit_code != 0


class TestCLIAnalyze:
    """Test 'analyze' command."""

    def test_analyze_with_boundary(self, cli_runner, epoch_dirs, boundary_csv, tmp_output_dir):
        """Test analyze command with a boundary and exports."""
        output_json = tmp_output_dir / "result.json"
        output_csv = tmp_output_dir / "diff.csv"

        result = cli_runner.invoke(main, [
            'analyze', str(epoch_dirs[0]), str(epoch_dirs[1]),
            '--boundary', str(boundary_csv),
            '--grid-size', '1.0',
            '--output', str(output_json),
            '--export-csv', str(output_csv),
        ])

        assert result.exit_code == 0, result.output
        assert 'Epoch 1: gridding' in result.output
        assert output_csv.exists()

        data = json.loads(output_json.read_text(encoding="utf-8"))
        assert data['weighting'] == 'exact'
        assert data['area'] == pytest.approx(36.0)
        assert data['fill_volume'] == pytest.approx(36.0)
        assert data['net_volume'] == pytest.approx(36.0)

    def test_analyze_uses_cache(self, cli_runner, epoch_dirs, tmp_output_dir):
        cache = tmp_output_dir / "cache"
        args = ['analyze', str(epoch_dirs[0]), str(epoch_dirs[1]), '-g', '1.0', '--cache', str(cache)]

        first = cli_runner.invoke(main, args)
        assert first.exit_code == 0, first.output
        assert (cache / "grid1.npz").exists()
        assert (cache / "grid2.npz").exists()

        second = cli_runner.invoke(main, args)
        assert second.exit_code == 0, second.output
        assert 'Epoch 1: using cached grid' in second.output
        assert 'Epoch 2: using cached grid' in second.output

        refreshed = cli_runner.invoke(main, args + ['--refresh'])
        assert 'Epoch 1: gridding' in refreshed.output

    def test_cache_not_shared_between_folders(self, cli_runner, epoch_dirs, tmp_path, tmp_output_dir):
        """A cache filled from one pair of folders is not reused for another."""
        before = tmp_path / "site_b" / "before"
        after = tmp_path / "site_b" / "after"
        shutil.copytree(epoch_dirs[0], before)
        shutil.copytree(epoch_dirs[1], after)
        tile = after / "Tile_+000_+000" / "tile.obj"
        tile.write_text(tile.read_text(encoding="utf-8").replace("101.0\n", "105.0\n"), encoding="utf-8")

        cache = tmp_output_dir / "cache"
        cached_json = tmp_output_dir / "cached.json"
        plain_json = tmp_output_dir / "plain.json"

        first = cli_runner.invoke(main, [
            'analyze', str(epoch_dirs[0]), str(epoch_dirs[1]), '-g', '1.0', '--cache', str(cache),
        ])
        assert first.exit_code == 0, first.output

        second = cli_runner.invoke(main, [
            'analyze', str(before), str(after), '-g', '1.0', '--cache', str(cache),
            '--output', str(cached_json),
        ])
        assert second.exit_code == 0, second.output
        assert 'using cached grid' not in second.output

        plain = cli_runner.invoke(main, [
            'analyze', str(before), str(after), '-g', '1.0', '--output', str(plain_json),
        ])
        assert plain.exit_code == 0, plain.output

        cached = json.loads(cached_json.read_text(encoding="utf-8"))
        fresh = json.loads(plain_json.read_text(encoding="utf-8"))
        assert cached['fill_volume'] == pytest.approx(fresh['fill_volume'])
        assert cached['fill_volume'] == pytest.approx(5 * 144.0)

    def test_cache_invalidated_by_grid_size(self, cli_runner, epoch_dirs, tmp_output_dir):
        cache = tmp_output_dir / "cache"
        args = ['analyze', str(epoch_dirs[0]), str(epoch_dirs[1]), '--cache', str(cache)]

        assert cli_runner.invoke(main, args + ['-g', '1.0']).exit_code == 0
        result = cli_runner.invoke(main, args + ['-g', '2.0'])

        assert result.exit_code == 0, result.output
        assert 'Epoch 1: gridding' in result.output

    def test_supersample_below_one_rejected(self, cli_runner, tmp_output_dir, flat_grids):
        grid1, grid2 = flat_grids
        path1 = save_grid(grid1, tmp_output_dir / "a.npz")
        path2 = save_grid(grid2, tmp_output_dir / "b.npz")

        result = cli_runner.invoke(main, ['volume', str(path1), str(path2), '--supersample', '0'])

        assert result.exit_code == 2
        assert 'supersample' in result.output

    def test_analyze_short_boundary(self, cli_runner, epoch_dirs, tmp_path):
        """Test analyze fails with fewer than three boundary points."""
        boundary = tmp_path / "short.csv"
        boundary.write_text("1,4000002,500002\n2,4000002,500008\n", encoding="utf-8")

        result = cli_runner.invoke(main, [
            'analyze', str(epoch_dirs[0]), str(epoch_dirs[1]),
            '--boundary', str(boundary),
        ])

        assert result.exit_code == 1
        assert 'at least 3 vertices' in result.output

    def test_analyze_disjoint_boundary(self, cli_runner, epoch_dirs, tmp_path):
        boundary = tmp_path / "far.csv"
        boundary.write_text(
            "1,0,0\n2,0,10\n3,10,10\n",
            encoding="utf-8",
        )

        result = cli_runner.invoke(main, [
            'analyze', str(epoch_dirs[0]), str(epoch_dirs[1]),
            '--boundary', str(boundary),
        ])

        assert result.exit_code == 1
        assert 'Error' in result.output

    @pytest.mark.requires_matplotlib
    @pytest.mark.slow
    def test_analyze_report(self, cli_runner, epoch_dirs, boundary_csv, tmp_output_dir):
        import matplotlib
        matplotlib.use("Agg")

        report = tmp_output_dir / "report.png"
        result = cli_runner.invoke(main, [
            'analyze', str(epoch_dirs[0]), str(epoch_dirs[1]),
            '--boundary', str(boundary_csv),
            '--report', str(report),
        ])

        assert result.exit_code == 0, result.output
        assert report.exists()
