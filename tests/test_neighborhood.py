# -- Neighborhood Tests -- #

'''
Flattening of per-particle neighborhoods into pair arrays.
'''

import numpy as np

from FluidSim.sph.neighborhood import Neighborhood, NeighborPairs


def makeNeighborhood(particleId: int, neighborIds: list[int], dim: int = 2) -> Neighborhood:
    k = len(neighborIds)
    displacements = np.arange(k * dim, dtype=np.float64).reshape(k, dim) + 1.0
    return Neighborhood(
        particleId=particleId,
        neighborIds=np.array(neighborIds, dtype=np.int64),
        displacements=displacements,
        distances=np.linalg.norm(displacements, axis=1),
        gradients=-displacements,
    )


def testGradientSum():
    neighborhood = makeNeighborhood(0, [1, 2])
    np.testing.assert_allclose(neighborhood.gradientSum, [-4.0, -6.0])
    assert len(neighborhood) == 2


def testEmptyNeighborhoodGradientSum():
    neighborhood = makeNeighborhood(0, [])
    np.testing.assert_array_equal(neighborhood.gradientSum, [0.0, 0.0])


def testFromNeighborhoods():
    neighborhoods = [
        makeNeighborhood(0, [1, 2]),
        makeNeighborhood(1, []),
        makeNeighborhood(2, [0]),
    ]
    pairs = NeighborPairs.fromNeighborhoods(neighborhoods, dimensions=2)

    assert pairs.nParticles == 3
    assert pairs.nPairs == 3
    np.testing.assert_array_equal(pairs.iIdx, [0, 0, 2])
    np.testing.assert_array_equal(pairs.jIdx, [1, 2, 0])
    np.testing.assert_array_equal(pairs.neighborCounts, [2, 0, 1])
    assert pairs.gradients.shape == (3, 2)


def testSumPerParticle():
    neighborhoods = [makeNeighborhood(0, [1, 2]), makeNeighborhood(1, []), makeNeighborhood(2, [0])]
    pairs = NeighborPairs.fromNeighborhoods(neighborhoods, dimensions=2)

    np.testing.assert_allclose(pairs.sumPerParticle(np.array([1.0, 2.0, 5.0])), [3.0, 0.0, 5.0])

    vectorSums = pairs.sumPerParticle(pairs.gradients)
    np.testing.assert_allclose(vectorSums[0], neighborhoods[0].gradientSum)
    np.testing.assert_allclose(vectorSums[1], [0.0, 0.0])


def testAllEmptyNeighborhoods():
    pairs = NeighborPairs.fromNeighborhoods([makeNeighborhood(i, [], 3) for i in range(4)], 3)

    assert pairs.nPairs == 0
    assert pairs.gradients.shape == (0, 3)
    np.testing.assert_array_equal(pairs.neighborCounts, [0, 0, 0, 0])
    np.testing.assert_array_equal(pairs.sumPerParticle(np.zeros((0, 3))), np.zeros((4, 3)))
