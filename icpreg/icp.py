"""Iterative Closest Point (ICP) algorithm implementation."""

import copy
import enum
import time

import numpy as np
from joblib import Parallel, delayed

from .errors import ErrorModel, get_error_model
from .exceptions import ConfigurationError, NoCorrespondenceFailure, NumericalFailure, IcpError
from .kdtree import KDTree
from .losses import MEstimator, get_mestimator
from .transforms import twist_to_matrix, compose
from .utils import nearest_neighbor_search


class IcpParameters:
    """
    Optimisation parameters for ICP.

    Args:
        lambda_: Rate of convergence, the twist increment is scaled by it
        max_iter: Maximum number of allowed iterations
        min_variation: ICP stops when the error variation between two
            iterations is under this value
        max_correspondance_distance: Do not match points further apart
        initial_guess: Twist of the initial pose, translation first then
            rotation vector: (tx, ty, tz, wx, wy, wz)
        n_jobs: Workers used for the nearest neighbor queries
    """

    def __init__(self, lambda_=1.0, max_iter=10, min_variation=1e-4,
                 max_correspondance_distance=np.inf, initial_guess=None, n_jobs=1):
        self.lambda_ = lambda_
        self.max_iter = max_iter
        self.min_variation = min_variation
        self.max_correspondance_distance = max_correspondance_distance
        if initial_guess is None:
            initial_guess = np.zeros(6)
        self.initial_guess = np.asarray(initial_guess, dtype=float).reshape(6)
        self.n_jobs = n_jobs

    def validate(self):
        if not self.lambda_ > 0:
            raise ConfigurationError(f"lambda must be positive, got {self.lambda_}")
        if int(self.max_iter) != self.max_iter or self.max_iter < 1:
            raise ConfigurationError(f"max_iter must be an integer >= 1, got {self.max_iter}")
        if not self.min_variation >= 0:
            raise ConfigurationError(f"min_variation must be >= 0, got {self.min_variation}")
        if not self.max_correspondance_distance >= 0:
            raise ConfigurationError("max_correspondance_distance must be >= 0, "
                                     f"got {self.max_correspondance_distance}")
        if not np.all(np.isfinite(self.initial_guess)):
            raise ConfigurationError("initial_guess must be finite")

    def __eq__(self, other):
        if not isinstance(other, IcpParameters):
            return NotImplemented
        return (self.lambda_ == other.lambda_ and self.max_iter == other.max_iter
                and self.min_variation == other.min_variation
                and self.max_correspondance_distance == other.max_correspondance_distance
                and np.array_equal(self.initial_guess, other.initial_guess)
                and self.n_jobs == other.n_jobs)

    def __str__(self):
        return (f"Lambda: {self.lambda_}\n"
                f"Max iterations: {self.max_iter}\n"
                f"Min variation: {self.min_variation}\n"
                f"Max correspondance distance: {self.max_correspondance_distance}\n"
                f"Initial guess (twist): {self.initial_guess}")


class IcpStatus(enum.Enum):
    UNINITIALIZED = 'uninitialized'
    READY = 'ready'
    RUNNING = 'running'
    CONVERGED = 'converged'
    MAX_ITERATIONS_REACHED = 'max_iterations_reached'
    FAILED = 'failed'


class IcpResults:
    """
    Results for the ICP.

    ``registration_error`` holds the error history: the first value is the
    error before ICP, the last value the error after the final iteration.
    """

    def __init__(self):
        self.clear()

    def clear(self):
        self.registered_point_cloud = None
        self.registration_error = []
        self.transformation = np.zeros((4, 4))
        self.status = IcpStatus.UNINITIALIZED
        self.iterations = 0

    @property
    def initial_error(self):
        return self.registration_error[0]

    @property
    def final_error(self):
        return self.registration_error[-1]

    @property
    def converged(self):
        return self.status in (IcpStatus.CONVERGED, IcpStatus.MAX_ITERATIONS_REACHED)

    def __str__(self):
        if not self.registration_error:
            return "Icp: No Results!"
        history = ", ".join(f"{e:.6g}" for e in self.registration_error)
        return (f"Status: {self.status.value}\n"
                f"Initial error: {self.initial_error}\n"
                f"Final error: {self.final_error}\n"
                f"Final transformation:\n{self.transformation}\n"
                f"Error history: {history}")


class Correspondences:
    """Matched index pairs of one iteration, within the search distance."""

    def __init__(self, source_indices, target_indices, distances):
        self.source_indices = source_indices
        self.target_indices = target_indices
        self.distances = distances

    def __len__(self):
        return len(self.source_indices)


class IcpDriver:
    """
    Rigid registration of a source cloud onto a fixed target cloud.

    The error model and the M-estimator are pluggable: pass registry names
    ('point_to_plane', 'huber', ...) or instances.
    """

    def __init__(self, error_model='point_to_plane', mestimator='none',
                 mestimator_params=None, parameters=None, verbose=False):
        if isinstance(error_model, str):
            error_model = get_error_model(error_model)
        if isinstance(mestimator, str):
            mestimator = get_mestimator(mestimator, mestimator_params)
        if not isinstance(error_model, ErrorModel):
            raise TypeError(f"Expected an ErrorModel, got {type(error_model).__name__}")
        if not isinstance(mestimator, MEstimator):
            raise TypeError(f"Expected an MEstimator, got {type(mestimator).__name__}")

        self.error_model = error_model
        self.mestimator = mestimator
        self.verbose = verbose
        self.target = None
        self.source = None
        self.kdtree = None
        self._parameters = IcpParameters() if parameters is None else copy.deepcopy(parameters)
        self._results = IcpResults()
        self.state = IcpStatus.UNINITIALIZED

    def set_input_target(self, cloud):
        """Set the fixed reference cloud and rebuild the spatial index over it."""
        self.target = cloud
        self.kdtree = KDTree(dimension=3, verbose=self.verbose)
        self.kdtree.build(cloud.points)
        self._update_state()

    def set_input_source(self, cloud):
        """Set the cloud to be aligned onto the target."""
        self.source = cloud
        self._update_state()

    def set_parameters(self, parameters):
        self._parameters = copy.deepcopy(parameters)

    def get_parameters(self):
        return copy.deepcopy(self._parameters)

    def get_results(self):
        """Results of the last run(), empty if run() was never called."""
        return self._results

    def _update_state(self):
        if self.target is not None and self.source is not None:
            self.state = IcpStatus.READY

    def find_correspondences(self, current, max_distance=np.inf, n_jobs=1):
        """
        Nearest target point of every current point, rejecting far matches.

        Args:
            current: PointCloud, the source under the current pose
            max_distance: Matches strictly further than this are dropped
            n_jobs: Parallel workers for the per-point queries

        Returns:
            Correspondences
        """
        points = current.points
        if n_jobs == 1 or len(points) < 2:
            results = [nearest_neighbor_search(p, self.kdtree.root, self.kdtree.points)
                       for p in points]
        else:
            results = Parallel(n_jobs=n_jobs, backend='loky')(
                delayed(nearest_neighbor_search)(p, self.kdtree.root, self.kdtree.points)
                for p in points
            )
        if results:
            neighbors, distances = (np.array(x) for x in zip(*results))
        else:
            neighbors, distances = np.empty(0, dtype=np.int64), np.empty(0)

        # NaN distances compare False and are rejected as well
        keep = (neighbors >= 0) & (distances <= max_distance)
        return Correspondences(np.flatnonzero(keep), neighbors[keep].astype(np.int64),
                               distances[keep])

    def _check_ready(self, params):
        if self.target is None:
            raise ConfigurationError("Target point cloud is not set, call set_input_target()")
        if self.source is None:
            raise ConfigurationError("Source point cloud is not set, call set_input_source()")
        if len(self.target) == 0 or self.kdtree is None or self.kdtree.is_empty:
            raise ConfigurationError("Target point cloud is empty")
        if len(self.source) == 0:
            raise ConfigurationError("Source point cloud is empty")
        if self.error_model.requires_normals and not self.source.has_normals:
            raise ConfigurationError(
                f"{self.error_model.name} error needs normals on the source cloud")
        params.validate()

    def _evaluate(self, transformation, params):
        """Transform the original source, match it and compute the residuals."""
        current = self.source.transformed(transformation)
        matches = self.find_correspondences(
            current, params.max_correspondance_distance, params.n_jobs)
        if len(matches) == 0:
            raise NoCorrespondenceFailure(
                "No correspondence within max_correspondance_distance="
                f"{params.max_correspondance_distance}")
        self.error_model.set_input_reference(self.target.subset(matches.target_indices))
        self.error_model.set_input_current(current.subset(matches.source_indices))
        residuals = self.error_model.compute_error()
        return current, matches, residuals

    @staticmethod
    def _error_norm(residuals):
        return float(np.sqrt(np.mean(residuals**2)))

    def _solve(self, jacobian, residuals, weights):
        """Weighted normal equations (J^T W J) dx = -J^T W r."""
        JtW = jacobian.T * weights
        A = JtW @ jacobian
        b = -JtW @ residuals
        if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b))):
            raise NumericalFailure("Normal equations contain non-finite values")
        rank = np.linalg.matrix_rank(A)
        if rank < 6:
            raise NumericalFailure(
                f"Normal equations are rank deficient (rank {rank} < 6) with "
                f"{len(residuals)} residuals, geometry does not constrain all 6 DOF")
        try:
            return np.linalg.solve(A, b)
        except np.linalg.LinAlgError as e:
            raise NumericalFailure(f"Normal equations solve failed: {e}") from e

    def run(self):
        """
        Runs the ICP algorithm with the current parameters.

        Raises:
            ConfigurationError: inputs missing or invalid, nothing is run and
                get_results() is left empty
            NumericalFailure: singular system or non-finite residuals
            NoCorrespondenceFailure: no match within the search distance

        Run-time failures carry the partial results (status FAILED) on the
        exception's ``results`` attribute; they are also kept as get_results().
        """
        params = copy.deepcopy(self._parameters)
        results = IcpResults()
        self._results = results
        self._check_ready(params)

        total_start = time.time()
        self.state = results.status = IcpStatus.RUNNING

        if self.verbose:
            print(f"\n{'='*70}")
            print(f"ICP - {self.error_model.name.upper().replace('_', '-')} "
                  f"(M-estimator: {self.mestimator!r})")
            print(f"{'='*70}")
            print(f"Source points: {len(self.source):,}")
            print(f"Target points: {len(self.target):,}")
            print(params)
            print(f"{'─'*70}")

        transformation = twist_to_matrix(params.initial_guess)
        results.transformation = transformation
        iteration_times = []

        try:
            current, matches, residuals = self._evaluate(transformation, params)
            results.registration_error.append(self._error_norm(residuals))
            results.registered_point_cloud = current
            if self.verbose:
                print(f"Initial: error={results.initial_error:.6g} | "
                      f"matches={len(matches)}/{len(self.source)}")

            for i in range(1, int(params.max_iter) + 1):
                iter_start = time.time()

                jacobian = self.error_model.compute_jacobian()
                weights = self.mestimator.compute_weights(residuals)
                increment = self._solve(jacobian, residuals, weights)

                transformation = compose(params.lambda_ * increment, transformation)
                current, matches, residuals = self._evaluate(transformation, params)

                error = self._error_norm(residuals)
                results.registration_error.append(error)
                results.transformation = transformation
                results.registered_point_cloud = current
                results.iterations = i
                iteration_times.append(time.time() - iter_start)

                if self.verbose:
                    print(f"Iter {i:3d}: error={error:.6g} | matches={len(matches)} | "
                          f"time={iteration_times[-1]:.3f}s")

                if i >= params.max_iter:
                    results.status = IcpStatus.MAX_ITERATIONS_REACHED
                    break
                if abs(error - results.registration_error[-2]) < params.min_variation:
                    results.status = IcpStatus.CONVERGED
                    break
        except IcpError as e:
            results.status = IcpStatus.FAILED
            self.state = IcpStatus.FAILED
            e.results = results
            if self.verbose:
                print(f"\n✗ ICP failed after {results.iterations} iteration(s): {e}")
            raise

        self.state = results.status

        if self.verbose:
            total_time = time.time() - total_start
            print(f"\n{'='*70}")
            print("SUMMARY")
            print(f"{'='*70}")
            print(f"Status:             {results.status.value}")
            print(f"Total runtime:      {total_time:.3f}s")
            print(f"ICP iterations:     {results.iterations}")
            if iteration_times:
                print(f"Average iter time:  {np.mean(iteration_times):.3f}s")
            print(f"Initial error:      {results.initial_error:.6g}")
            print(f"Final error:        {results.final_error:.6g}")
            print(f"{'='*70}\n")

        return results
